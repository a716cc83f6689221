"""
音频合并
优先使用 ffmpeg concat demuxer 无损拼接，ffmpeg 不可用或失败时退回字节直接拼接
"""
import asyncio
import os
import shutil
import uuid
from typing import List, Optional

import structlog

from app.core.config import settings

logger = structlog.get_logger()


def _quote_manifest_path(path: str) -> str:
    # concat清单中的单引号转义为 '\''
    escaped = path.replace("'", "'\\''")
    return f"file '{escaped}'"


def build_concat_manifest(file_paths: List[str]) -> str:
    """生成 ffmpeg concat demuxer 的文件清单"""
    return "\n".join(_quote_manifest_path(os.path.abspath(p)) for p in file_paths) + "\n"


class AudioMerger:
    """按顺序合并多个MP3片段为一个文件"""

    def __init__(self, ffmpeg_binary: Optional[str] = None):
        self.ffmpeg_binary = ffmpeg_binary or settings.FFMPEG_BINARY

    async def merge(self, buffers: List[bytes], output_path: str) -> str:
        """
        合并音频片段

        Args:
            buffers: 按播放顺序排列的音频数据
            output_path: 输出文件路径

        Returns:
            使用的合并方式（ffmpeg / concat / single）
        """
        if not buffers:
            raise ValueError("没有可合并的音频片段")

        output_dir = os.path.dirname(os.path.abspath(output_path))
        os.makedirs(output_dir, exist_ok=True)

        if len(buffers) == 1:
            with open(output_path, "wb") as f:
                f.write(buffers[0])
            return "single"

        prefix = f"temp_{uuid.uuid4().hex[:12]}"
        segment_paths = []
        list_path = os.path.join(output_dir, f"{prefix}_list.txt")
        try:
            for index, buffer in enumerate(buffers):
                segment_path = os.path.join(output_dir, f"{prefix}_segment_{index}.mp3")
                with open(segment_path, "wb") as f:
                    f.write(buffer)
                segment_paths.append(segment_path)

            with open(list_path, "w", encoding="utf-8") as f:
                f.write(build_concat_manifest(segment_paths))

            if await self._run_ffmpeg(list_path, output_path):
                logger.info("音频合并完成", method="ffmpeg", segments=len(buffers))
                return "ffmpeg"

            logger.warning("ffmpeg合并失败，退回直接拼接", segments=len(buffers))
            with open(output_path, "wb") as f:
                for buffer in buffers:
                    f.write(buffer)
            return "concat"
        finally:
            for path in segment_paths + [list_path]:
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning("清理临时音频文件失败", path=path, error=str(e))

    async def _run_ffmpeg(self, list_path: str, output_path: str) -> bool:
        """执行 ffmpeg concat，返回是否成功"""
        binary = shutil.which(self.ffmpeg_binary)
        if binary is None:
            logger.warning("未找到ffmpeg", ffmpeg=self.ffmpeg_binary)
            return False

        args = [
            binary, "-y", "-hide_banner", "-loglevel", "error",
            "-f", "concat", "-safe", "0", "-i", list_path,
            "-c", "copy", output_path,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as e:
            logger.warning("ffmpeg启动失败", error=str(e))
            return False

        if process.returncode != 0:
            logger.warning(
                "ffmpeg执行失败",
                returncode=process.returncode,
                stderr=stderr.decode("utf-8", "replace")[:500],
            )
            return False
        return True
