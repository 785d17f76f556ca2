"""NDJSON 라인 → Bulk API 페이로드 변환

Bulk API는 액션 메타 라인과 문서 본문 라인을 번갈아 보내는 형식:

    {"index": {"_index": "books", "_id": "42"}}
    {"id": 42, "title": "..."}

문서 본문은 입력 라인을 그대로 보낸다 (재직렬화 없음).
"""

from __future__ import annotations

import json
from typing import NamedTuple, Sequence

from .config import LoadConfig


class MalformedLineError(ValueError):
    """JSON 객체로 해석할 수 없는 입력 라인."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"{reason}: {line[:200]}")
        self.line = line
        self.reason = reason


class BulkAction(NamedTuple):
    meta: dict
    source: str


def extract_id(doc: dict, field: str, line: str) -> str | None:
    """최상위 스칼라 필드에서 _id 추출. 필드가 없으면 None.

    bool/null/객체/배열은 강제 변환하지 않고 MalformedLineError.
    """
    if field not in doc:
        return None
    value = doc[field]
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise MalformedLineError(
            line, f"id 필드 {field!r}는 문자열 또는 숫자여야 합니다 ({type(value).__name__})"
        )
    return str(value)


def make_action(line: str, config: LoadConfig) -> BulkAction:
    """입력 라인 1개를 BulkAction으로 변환."""
    try:
        doc = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedLineError(line, f"invalid JSON ({e.msg})") from e
    if not isinstance(doc, dict):
        raise MalformedLineError(line, "JSON 객체가 아님")

    header: dict = {"_index": config.index_name}
    if config.doc_type:
        header["_type"] = config.doc_type
    if config.id_field:
        doc_id = extract_id(doc, config.id_field, line)
        if doc_id is not None:
            header["_id"] = doc_id
    if config.pipeline:
        header["pipeline"] = config.pipeline

    return BulkAction({"index": header}, line)


def build_payload(batch: Sequence[BulkAction]) -> str:
    """배치 → Bulk API 요청 본문. 같은 배치는 항상 같은 바이트열."""
    parts = []
    for action in batch:
        parts.append(json.dumps(action.meta, separators=(",", ":"), ensure_ascii=False))
        parts.append(action.source)
    return "".join(f"{p}\n" for p in parts)
