"""
模型输出的结构化解析

模型返回的格式没有保证，解析结果是 Parsed 或 Degraded 二者之一，
调用方必须处理两种情况。格式不符是预期内的结果，不使用异常表达。
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, TypeVar, Union

T = TypeVar("T")

_FENCE_START = re.compile(r'^```(?:json)?\s*\n?', re.IGNORECASE)
_FENCE_END = re.compile(r'\n?```\s*$')
# 贪婪匹配：第一个 { 到最后一个 }
_JSON_OBJECT = re.compile(r'\{.*\}', re.DOTALL)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """解析成功"""
    value: T


@dataclass(frozen=True)
class Degraded:
    """解析失败，保留原始文本"""
    raw_text: str
    reason: str = ""


ParseResult = Union[Parsed[T], Degraded]


def truncate_text(text: str, limit: int) -> str:
    """按字符数截断输入文本"""
    if not text:
        return ""
    return text[:limit]


def strip_code_fence(text: str) -> str:
    """移除markdown代码块标记（```json ... ``` 或 ``` ... ```）"""
    cleaned = (text or "").strip()
    if cleaned.startswith('```'):
        cleaned = _FENCE_START.sub('', cleaned)
        cleaned = _FENCE_END.sub('', cleaned)
        cleaned = cleaned.strip()
    return cleaned


def extract_json_object(text: str) -> "ParseResult[Dict[str, Any]]":
    """
    从模型输出中提取JSON对象

    Args:
        text: 模型原始输出（可能夹杂说明文字或代码块）

    Returns:
        Parsed(dict) 或 Degraded(原始文本)
    """
    raw = text or ""
    match = _JSON_OBJECT.search(strip_code_fence(raw))
    if not match:
        return Degraded(raw, "no_json_object")

    try:
        value = json.loads(match.group())
    except json.JSONDecodeError as e:
        return Degraded(raw, f"invalid_json: {e.msg}")

    if not isinstance(value, dict):
        return Degraded(raw, "not_an_object")
    return Parsed(value)
