#!/usr/bin/env python3
"""
es_bulkload 예시 3 — 인덱스 관리 + 적재 설정 복원 (Mock 클라이언트)

테스트 항목:
  1. IndexAdmin — ensure/delete/put_mapping, load_mapping (문자열/파일)
  2. bulk_settings — 서버별 refresh=-1 → 복원 순서 (refresh → replicas → flush)
  3. zero_replica — 적재 중 replicas=0, 종료 시 원래 값
  4. 적재 중 실패 — 두 서버 모두 복원
  5. 두 번째 서버 준비 실패 — 첫 번째 서버는 복원됨
  6. 복원 실패 — 에러 로그 (서버 메시지 그대로) 후 전파, 다른 서버 복원은 계속
"""

import asyncio
import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig
from elasticsearch import ApiError

from es_bulkload import (
    IndexAdmin,
    LoadConfig,
    Transport,
    TransportFailure,
    bulk_settings,
    load_mapping,
    setup_logging,
)

SERVERS = ("http://es01:9200", "http://es02:9200")


def api_error(status: int, message: str | None = None) -> ApiError:
    meta = ApiResponseMeta(
        status=status,
        http_version="1.1",
        headers=HttpHeaders(),
        duration=0.0,
        node=NodeConfig("http", "es01", 9200),
    )
    return ApiError(message or f"HTTP {status}", meta=meta, body={"error": "test"})


def fake_es(server: str, events: list, replicas: str = "1") -> MagicMock:
    """indices.* 호출을 (server, op, 값) 형태로 events에 기록하는 Mock 클라이언트"""
    es = MagicMock()
    es.close = AsyncMock()
    es.indices = MagicMock()

    async def get_settings(index):
        events.append((server, "get_settings", index))
        return {index: {"settings": {"index": {
            "number_of_replicas": replicas, "refresh_interval": "30s",
        }}}}

    async def put_settings(index, settings):
        events.append((server, "put_settings", settings["index"]))

    async def flush(index):
        events.append((server, "flush", index))

    es.indices.get_settings = AsyncMock(side_effect=get_settings)
    es.indices.put_settings = AsyncMock(side_effect=put_settings)
    es.indices.flush = AsyncMock(side_effect=flush)
    es.indices.exists = AsyncMock(return_value=False)
    es.indices.create = AsyncMock()
    es.indices.delete = AsyncMock()
    es.indices.put_mapping = AsyncMock()
    return es


def make_admin(config: LoadConfig, events: list, overrides: dict | None = None) -> tuple[IndexAdmin, dict]:
    overrides = overrides or {}
    clients = {s: overrides.get(s) or fake_es(s, events) for s in config.servers}
    transport = Transport(config, clients=clients)
    return IndexAdmin(transport, config.index_name), clients


def test_index_admin():
    """IndexAdmin: 적재 전 준비"""
    print("=" * 60)
    print("[1] IndexAdmin — ensure / delete / mapping")
    print("=" * 60)

    config = LoadConfig(index_name="books", servers=SERVERS, retry_backoff=0.0)
    admin, clients = make_admin(config, [])
    primary = clients[SERVERS[0]]

    assert asyncio.run(admin.ensure_index()) is True
    primary.indices.create.assert_awaited_once_with(index="books")
    primary.indices.exists = AsyncMock(return_value=True)
    assert asyncio.run(admin.ensure_index()) is False
    assert primary.indices.create.await_count == 1
    clients[SERVERS[1]].indices.create.assert_not_awaited()
    print("  ensure_index: 없으면 생성 / 있으면 유지 (첫 번째 서버)  OK")

    assert asyncio.run(admin.delete_index()) is True
    primary.indices.delete = AsyncMock(side_effect=api_error(404))
    assert asyncio.run(admin.delete_index()) is False
    primary.indices.delete = AsyncMock(side_effect=api_error(403))
    try:
        asyncio.run(admin.delete_index())
        assert False, "Should have raised"
    except TransportFailure as e:
        assert e.status == 403
    print("  delete_index: 404 무시 / 403 전파  OK")

    mapping = {"properties": {"title": {"type": "text"}}}
    asyncio.run(admin.put_mapping(mapping))
    primary.indices.put_mapping.assert_awaited_once_with(index="books", body=mapping)
    print("  put_mapping  OK")

    assert load_mapping(json.dumps(mapping)) == mapping
    with tempfile.TemporaryDirectory() as td:
        path = Path(td) / "mapping.json"
        path.write_text(json.dumps(mapping), encoding="utf-8")
        assert load_mapping(str(path)) == mapping
    for bad in ("{not json", "[1, 2]"):
        try:
            load_mapping(bad)
            assert False, "Should have raised"
        except ValueError:
            pass
    print("  load_mapping: JSON 문자열 / 파일 / 잘못된 값  OK")

    print("  PASS\n")


def test_bulk_settings_restore_order():
    """bulk_settings: 정상 종료 시 복원 순서"""
    print("=" * 60)
    print("[2] bulk_settings — 정상 종료")
    print("=" * 60)

    events = []
    config = LoadConfig(index_name="books", servers=SERVERS, refresh_interval="5s")
    admin, _ = make_admin(config, events)

    async def run():
        async with bulk_settings(admin, config) as snapshots:
            events.append(("-", "load", None))
            return snapshots

    snapshots = asyncio.run(run())
    assert [s.server for s in snapshots] == list(SERVERS)
    assert snapshots[0].number_of_replicas == "1"
    assert snapshots[0].refresh_interval == "30s"

    load_at = events.index(("-", "load", None))
    before, after = events[:load_at], events[load_at + 1:]
    for server in SERVERS:
        assert (server, "put_settings", {"refresh_interval": "-1"}) in before
        assert (server, "put_settings", {"number_of_replicas": 0}) not in before
        mine = [e for e in after if e[0] == server]
        assert mine == [
            (server, "put_settings", {"refresh_interval": "5s"}),
            (server, "put_settings", {"number_of_replicas": "1"}),
            (server, "flush", "books"),
        ]
    # 등록 역순으로 복원
    assert after[0][0] == SERVERS[1]
    print(f"  준비 {len(before)}건 / 복원 {len(after)}건, 순서 refresh → replicas → flush  OK")

    print("  PASS\n")


def test_zero_replica():
    """zero_replica: 적재 중 replicas=0"""
    print("=" * 60)
    print("[3] zero_replica")
    print("=" * 60)

    events = []
    config = LoadConfig(index_name="books", servers=SERVERS[:1], zero_replica=True)
    clients = {SERVERS[0]: fake_es(SERVERS[0], events, replicas="2")}
    admin = IndexAdmin(Transport(config, clients=clients), "books")

    async def run():
        async with bulk_settings(admin, config):
            pass

    asyncio.run(run())
    puts = [e[2] for e in events if e[1] == "put_settings"]
    assert puts == [
        {"refresh_interval": "-1"},
        {"number_of_replicas": 0},
        {"refresh_interval": "1s"},
        {"number_of_replicas": "2"},
    ]
    print(f"  settings 순서: {puts}  OK")

    print("  PASS\n")


def test_restore_after_failure():
    """적재 중 실패: 두 서버 모두 복원"""
    print("=" * 60)
    print("[4] 적재 중 실패 → 모든 서버 복원")
    print("=" * 60)

    events = []
    config = LoadConfig(index_name="books", servers=SERVERS)
    admin, _ = make_admin(config, events)

    async def run():
        async with bulk_settings(admin, config):
            raise TransportFailure("worker 실패 (시뮬레이션)")

    try:
        asyncio.run(run())
        assert False, "Should have raised"
    except TransportFailure as e:
        assert "시뮬레이션" in str(e)

    for server in SERVERS:
        assert (server, "put_settings", {"refresh_interval": "1s"}) in events
        assert (server, "put_settings", {"number_of_replicas": "1"}) in events
        assert (server, "flush", "books") in events
    print("  예외 전파 + 두 서버 refresh/replicas/flush 복원  OK")

    print("  PASS\n")


def test_partial_setup_failure():
    """두 번째 서버 준비 실패: 첫 번째 서버 복원"""
    print("=" * 60)
    print("[5] 두 번째 서버 준비 실패")
    print("=" * 60)

    events = []
    config = LoadConfig(index_name="books", servers=SERVERS, retry_backoff=0.0)
    broken = fake_es(SERVERS[1], events)
    broken.indices.get_settings = AsyncMock(side_effect=api_error(503))
    admin, _ = make_admin(config, events, {SERVERS[1]: broken})

    entered = []

    async def run():
        async with bulk_settings(admin, config):
            entered.append(True)

    try:
        asyncio.run(run())
        assert False, "Should have raised"
    except TransportFailure as e:
        assert e.status == 503
        assert e.server == SERVERS[1]

    assert entered == []
    assert broken.indices.get_settings.await_count == config.max_retries
    assert (SERVERS[0], "put_settings", {"refresh_interval": "-1"}) in events
    assert (SERVERS[0], "put_settings", {"refresh_interval": "1s"}) in events
    assert (SERVERS[0], "flush", "books") in events
    assert not [e for e in events if e[0] == SERVERS[1]]
    print("  적재 미시작, es01 복원 완료, es02 변경 없음  OK")

    print("  PASS\n")


def test_restore_failure():
    """복원 실패: 로그 후 전파, 다른 서버는 복원"""
    print("=" * 60)
    print("[6] 복원 중 flush 실패")
    print("=" * 60)

    setup_logging()
    events = []
    config = LoadConfig(index_name="books", servers=SERVERS, retry_backoff=0.0)
    broken = fake_es(SERVERS[1], events)
    # 서버 에러 메시지에 markup 태그처럼 보이는 텍스트
    broken.indices.flush = AsyncMock(side_effect=api_error(400, "flush rejected [/] [index]"))
    admin, _ = make_admin(config, events, {SERVERS[1]: broken})

    async def run():
        async with bulk_settings(admin, config):
            pass

    try:
        asyncio.run(run())
        assert False, "Should have raised"
    except TransportFailure as e:
        assert e.status == 400
        assert e.server == SERVERS[1]
        assert "[/]" in str(e)

    assert broken.indices.flush.await_count == 1  # 4xx는 재시도 없음
    assert (SERVERS[0], "put_settings", {"refresh_interval": "1s"}) in events
    assert (SERVERS[0], "flush", "books") in events
    print("  TransportFailure 전파, es01 복원 완료  OK")

    print("  PASS\n")


if __name__ == "__main__":
    test_index_admin()
    test_bulk_settings_restore_order()
    test_zero_replica()
    test_restore_after_failure()
    test_partial_setup_failure()
    test_restore_failure()

    print("=" * 60)
    print("ALL lifecycle EXAMPLES PASSED")
    print("=" * 60)
