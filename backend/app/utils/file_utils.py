"""
文件处理工具函数
"""
import os
import time
import uuid
from pathlib import Path
from typing import Optional, Union
import structlog

logger = structlog.get_logger()

# 下载时根据扩展名返回的Content-Type
CONTENT_TYPES = {
    "pdf": "application/pdf",
    "json": "application/json",
    "md": "text/markdown",
    "mp3": "audio/mpeg",
}


def get_file_extension(filename: str) -> str:
    """获取文件扩展名"""
    return Path(filename).suffix.lower().lstrip('.')


def get_content_type(filename: str) -> str:
    """根据扩展名获取Content-Type"""
    return CONTENT_TYPES.get(get_file_extension(filename), "application/octet-stream")


def is_safe_filename(filename: str) -> bool:
    """只允许纯文件名，拒绝路径穿越"""
    if not filename or filename in (".", ".."):
        return False
    return os.path.basename(filename) == filename and "\\" not in filename


def generate_artifact_filename(subject: str, ref: str, user_id: str, ext: str) -> str:
    """
    生成导出文件名

    格式：{subject}_{ref}_{userId}_{毫秒时间戳}_{随机串}.{ext}
    ref为文章ID或收藏类型，userId所在位置用于下载时的归属校验
    """
    timestamp = int(time.time() * 1000)
    return f"{subject}_{ref}_{user_id}_{timestamp}_{uuid.uuid4().hex[:6]}.{ext}"


def get_artifact_owner(filename: str) -> Optional[str]:
    """从导出文件名中解析userId（格式不符返回None）"""
    stem = Path(filename).stem
    parts = stem.split("_")
    if len(parts) < 5:
        return None
    return "_".join(parts[2:-2])


def save_file(directory: str, filename: str, content: Union[bytes, str]) -> str:
    """
    保存文件

    Returns:
        文件完整路径
    """
    os.makedirs(directory, exist_ok=True)
    file_path = os.path.join(directory, filename)

    if isinstance(content, bytes):
        with open(file_path, "wb") as f:
            f.write(content)
    else:
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(content)

    logger.info("文件保存成功", saved_path=file_path, size=os.path.getsize(file_path))
    return file_path


def remove_file(file_path: str) -> bool:
    """删除文件（不存在视为成功）"""
    try:
        os.remove(file_path)
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("删除文件失败", file_path=file_path, error=str(e))
        return False
