"""인덱스 관리 — 적재 전 준비(생성/삭제/매핑) + 설정 조회/변경 + flush

모든 요청은 Transport를 거치므로 재시도/인증 정책이 bulk 요청과 동일.
준비 작업은 첫 번째 서버에, 설정/flush 는 지정한 서버에 보낸다.
"""

from __future__ import annotations

import json
from pathlib import Path

from .log import get_logger
from .transport import Transport, TransportFailure

logger = get_logger("indexer")


def load_mapping(mapping: str) -> dict:
    """매핑 인자 해석: 존재하는 파일 경로면 파일 내용, 아니면 JSON 문자열."""
    path = Path(mapping)
    try:
        is_file = path.is_file()
    except OSError:  # JSON 문자열이 경로로 너무 긴 경우
        is_file = False
    text = path.read_text(encoding="utf-8") if is_file else mapping
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"매핑이 올바른 JSON이 아닙니다: {e}") from e
    if not isinstance(doc, dict):
        raise ValueError("매핑은 JSON 객체여야 합니다")
    return doc


class IndexAdmin:
    """단일 인덱스에 대한 1회성 관리 요청."""

    def __init__(self, transport: Transport, index_name: str):
        self.transport = transport
        self.index_name = index_name

    @property
    def primary(self) -> str:
        return self.transport.config.servers[0]

    # ================================================================
    # 적재 전 준비
    # ================================================================

    async def ensure_index(self) -> bool:
        """인덱스가 없을 때만 생성. True면 새로 생성됨."""
        exists = await self.transport.perform(
            lambda es: es.indices.exists(index=self.index_name),
            server=self.primary, what="index exists",
        )
        if exists:
            return False
        await self.transport.perform(
            lambda es: es.indices.create(index=self.index_name),
            server=self.primary, what="create index",
        )
        logger.info(f"인덱스 생성: [cyan]{self.index_name}[/cyan]")
        return True

    async def delete_index(self) -> bool:
        """인덱스 삭제. 존재하지 않으면 무시하고 False."""
        try:
            await self.transport.perform(
                lambda es: es.indices.delete(index=self.index_name),
                server=self.primary, what="delete index",
            )
        except TransportFailure as e:
            if e.status == 404:
                return False
            raise
        logger.info(f"인덱스 삭제: [cyan]{self.index_name}[/cyan]")
        return True

    async def put_mapping(self, mapping: dict):
        await self.transport.perform(
            lambda es: es.indices.put_mapping(index=self.index_name, body=mapping),
            server=self.primary, what="put mapping",
        )
        logger.info("매핑 적용 완료")

    # ================================================================
    # 설정 / flush — 서버별
    # ================================================================

    async def get_settings(self, server: str) -> dict:
        """GET /{index}/_settings → 해당 인덱스의 settings.index 딕셔너리"""
        resp = await self.transport.perform(
            lambda es: es.indices.get_settings(index=self.index_name),
            server=server, what="get settings",
        )
        body = getattr(resp, "body", resp)
        # alias로 지정된 경우 응답 키는 실제 인덱스 이름
        entry = body.get(self.index_name) or next(iter(body.values()), {})
        return entry.get("settings", {}).get("index", {})

    async def put_settings(self, server: str, settings: dict):
        """PUT /{index}/_settings, 본문은 {"index": settings}"""
        await self.transport.perform(
            lambda es: es.indices.put_settings(
                index=self.index_name, settings={"index": settings}
            ),
            server=server, what=f"put settings {settings}",
        )
        logger.debug(f"설정 적용 ({server}): {settings}")

    async def flush(self, server: str):
        await self.transport.perform(
            lambda es: es.indices.flush(index=self.index_name),
            server=server, what="flush",
        )
        logger.debug(f"flush 완료 ({server})")
