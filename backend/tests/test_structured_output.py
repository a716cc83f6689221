"""
结构化输出解析测试
"""
from app.services.structured_output import (
    Degraded,
    Parsed,
    extract_json_object,
    strip_code_fence,
    truncate_text,
)


def test_extract_json_surrounded_by_prose():
    """说明文字包裹的JSON对象被完整解析"""
    text = 'Sure! Here is the result:\n{"keywords": ["trade", "tariff"], "categories": ["business"]}\nHope it helps.'
    result = extract_json_object(text)
    assert isinstance(result, Parsed)
    assert result.value == {"keywords": ["trade", "tariff"], "categories": ["business"]}


def test_extract_json_with_nested_braces():
    text = '结果如下 {"a": {"b": [1, 2, {"c": "}"}]}, "d": "x"} 完毕'
    result = extract_json_object(text)
    assert isinstance(result, Parsed)
    assert result.value == {"a": {"b": [1, 2, {"c": "}"}]}, "d": "x"}


def test_extract_json_from_code_fence():
    text = '```json\n{"sentiment": "positive", "score": 0.9}\n```'
    result = extract_json_object(text)
    assert isinstance(result, Parsed)
    assert result.value["sentiment"] == "positive"


def test_no_json_object_is_degraded():
    result = extract_json_object("I cannot answer that.")
    assert isinstance(result, Degraded)
    assert result.raw_text == "I cannot answer that."
    assert result.reason == "no_json_object"


def test_invalid_json_is_degraded():
    result = extract_json_object("{'single': 'quotes'}")
    assert isinstance(result, Degraded)
    assert result.reason.startswith("invalid_json")


def test_two_objects_are_matched_greedily():
    """贪婪匹配从第一个 { 到最后一个 }，两个对象之间有文字时解析失败并降级"""
    result = extract_json_object('{"a": 1} and also {"b": 2}')
    assert isinstance(result, Degraded)


def test_empty_and_none_inputs():
    assert isinstance(extract_json_object(""), Degraded)
    assert isinstance(extract_json_object(None), Degraded)


def test_strip_code_fence_without_language():
    assert strip_code_fence("```\nplain\n```") == "plain"
    assert strip_code_fence("no fence") == "no fence"


def test_truncate_text():
    assert truncate_text("abcdef", 3) == "abc"
    assert truncate_text("", 3) == ""
    assert truncate_text(None, 3) == ""
