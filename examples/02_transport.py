#!/usr/bin/env python3
"""
es_bulkload 예시 2 — 서버 선택 + 재시도 + Transport (Mock 클라이언트)

테스트 항목:
  1. ServerSelector — 시드 재현성, 균등 분포, 빈 서버 목록
  2. RetryConfig / async_with_retry — 백오프 곡선, 재시도 조건
  3. build_es_client — 서버별 클라이언트, Basic Auth
  4. Transport.perform — 5xx 재시도 후 성공, 4xx 즉시 실패, 연결 실패 소진
  5. Transport.bulk — strict 모드 item 에러 검사
"""

import asyncio
from collections import Counter
from unittest.mock import AsyncMock, MagicMock, patch

from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig
from elasticsearch import ApiError
from elasticsearch import ConnectionError as ESConnectionError

from es_bulkload import (
    BulkItemError,
    LoadConfig,
    RetryConfig,
    ServerSelector,
    Transport,
    TransportFailure,
    async_with_retry,
    build_es_client,
)

SERVERS = ("http://es01:9200", "http://es02:9200", "http://es03:9200")


def api_error(status: int) -> ApiError:
    meta = ApiResponseMeta(
        status=status,
        http_version="1.1",
        headers=HttpHeaders(),
        duration=0.0,
        node=NodeConfig("http", "es01", 9200),
    )
    return ApiError(f"HTTP {status}", meta=meta, body={"error": {"type": "test"}})


def mock_client(**methods) -> MagicMock:
    es = MagicMock()
    for name, mock in methods.items():
        setattr(es, name, mock)
    es.close = AsyncMock()
    return es


def test_selector():
    """ServerSelector: 시드 재현 + 분포"""
    print("=" * 60)
    print("[1] ServerSelector")
    print("=" * 60)

    a = ServerSelector(SERVERS, seed=7)
    b = ServerSelector(SERVERS, seed=7)
    picks = [a.choose() for _ in range(50)]
    assert picks == [b.choose() for _ in range(50)]
    print("  같은 seed → 같은 선택 순서  OK")

    counts = Counter(ServerSelector(SERVERS, seed=1).choose() for _ in range(3000))
    assert set(counts) == set(SERVERS)
    for server, n in counts.items():
        assert 800 < n < 1200, (server, n)
    print(f"  3000회 분포: {dict(counts)}  OK")

    single = ServerSelector(["http://only:9200"])
    assert {single.choose() for _ in range(10)} == {"http://only:9200"}
    assert len(single) == 1

    try:
        ServerSelector([])
        assert False, "Should have raised"
    except ValueError:
        pass
    print("  단일 서버 / 빈 목록  OK")

    print("  PASS\n")


def test_retry_policy():
    """RetryConfig + async_with_retry"""
    print("=" * 60)
    print("[2] RetryConfig / async_with_retry")
    print("=" * 60)

    rc = RetryConfig(max_retries=5, initial_backoff=1.0, max_backoff=3.0)
    assert [rc.backoff(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]
    assert RetryConfig(initial_backoff=0.5, exponential=False).backoff(4) == 0.5
    print("  백오프: 1s → 2s → 3s(상한)  OK")

    sleeps = []

    async def fake_sleep(sec):
        sleeps.append(sec)

    calls = {"n": 0}

    @async_with_retry(rc, retry_if=lambda e: isinstance(e, TimeoutError), sleep=fake_sleep)
    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise TimeoutError("slow")
        return "ok"

    assert asyncio.run(flaky()) == "ok"
    assert calls["n"] == 3
    assert sleeps == [1.0, 2.0]
    print(f"  2회 실패 후 성공: sleeps={sleeps}  OK")

    calls["n"] = 0

    @async_with_retry(rc, retry_if=lambda e: isinstance(e, TimeoutError), sleep=fake_sleep)
    async def fatal():
        calls["n"] += 1
        raise KeyError("no retry")

    try:
        asyncio.run(fatal())
        assert False, "Should have raised"
    except KeyError:
        pass
    assert calls["n"] == 1
    print("  재시도 대상 아님 → 1회 후 즉시 전파  OK")

    print("  PASS\n")


def test_build_es_client():
    """build_es_client: 서버별 클라이언트 + 인증"""
    print("=" * 60)
    print("[3] build_es_client")
    print("=" * 60)

    with patch("es_bulkload.transport.AsyncElasticsearch") as MockES:
        build_es_client("http://es01:9200", LoadConfig(index_name="x"))
        kwargs = MockES.call_args.kwargs
        assert kwargs["hosts"] == ["http://es01:9200"]
        assert kwargs["max_retries"] == 0
        assert "basic_auth" not in kwargs
        print(f"  인증 없음: hosts={kwargs['hosts']}  OK")

        MockES.reset_mock()
        build_es_client(
            "https://es02:9200",
            LoadConfig(index_name="x", username="elastic", password="secret"),
        )
        assert MockES.call_args.kwargs["basic_auth"] == ("elastic", "secret")
        print("  basic_auth=(elastic, ***)  OK")

        MockES.reset_mock()
        Transport(LoadConfig(index_name="x", servers=SERVERS))
        assert MockES.call_count == len(SERVERS)
        print(f"  Transport: 서버 {len(SERVERS)}대 → 클라이언트 {MockES.call_count}개  OK")

    print("  PASS\n")


def test_transport_perform():
    """Transport.perform: 재시도 분류"""
    print("=" * 60)
    print("[4] Transport.perform — 재시도 분류")
    print("=" * 60)

    config = LoadConfig(index_name="books", servers=SERVERS[:1], retry_backoff=0.0)

    # 503 → 503 → 성공
    es = mock_client(bulk=AsyncMock(side_effect=[api_error(503), api_error(503), {"errors": False}]))
    retries = []
    transport = Transport(config, clients={SERVERS[0]: es}, on_retry=lambda: retries.append(1))
    resp = asyncio.run(transport.bulk("{}\n{}\n"))
    assert resp == {"errors": False}
    assert es.bulk.await_count == 3
    assert len(retries) == 2
    es.bulk.assert_awaited_with(operations="{}\n{}\n")
    print("  503 ×2 후 성공 (시도 3회)  OK")

    # 400 → 재시도 없이 실패
    es = mock_client(bulk=AsyncMock(side_effect=api_error(400)))
    transport = Transport(config, clients={SERVERS[0]: es})
    try:
        asyncio.run(transport.bulk("x\n"))
        assert False, "Should have raised"
    except TransportFailure as e:
        assert e.status == 400
        assert e.server == SERVERS[0]
    assert es.bulk.await_count == 1
    print("  400 → 즉시 TransportFailure  OK")

    # 연결 실패 → max_retries 소진
    es = mock_client(bulk=AsyncMock(side_effect=ESConnectionError("refused")))
    transport = Transport(config, clients={SERVERS[0]: es})
    try:
        asyncio.run(transport.bulk("x\n"))
        assert False, "Should have raised"
    except TransportFailure as e:
        assert e.status is None
        assert "refused" in str(e)
    assert es.bulk.await_count == config.max_retries
    print(f"  연결 실패 → {config.max_retries}회 시도 후 TransportFailure  OK")

    # server 지정 시 선택기를 거치지 않음
    clients = {s: mock_client(info=AsyncMock(return_value=s)) for s in SERVERS}
    transport = Transport(
        LoadConfig(index_name="books", servers=SERVERS), clients=clients
    )
    for s in SERVERS:
        got = asyncio.run(transport.perform(lambda es: es.info(), server=s))
        assert got == s
    print("  server 지정 요청  OK")

    asyncio.run(transport.close())
    for es in clients.values():
        es.close.assert_awaited_once()
    print("  close: 모든 클라이언트 종료  OK")

    print("  PASS\n")


def test_bulk_strict_mode():
    """Transport.bulk: item 에러 검사 (strict)"""
    print("=" * 60)
    print("[5] Transport.bulk — strict 모드")
    print("=" * 60)

    partial = {
        "errors": True,
        "items": [
            {"index": {"status": 201}},
            {"index": {"status": 400, "error": {"type": "mapper_parsing_exception"}}},
        ],
    }

    es = mock_client(bulk=AsyncMock(return_value=partial))
    lenient = Transport(LoadConfig(index_name="b", servers=SERVERS[:1]), clients={SERVERS[0]: es})
    assert asyncio.run(lenient.bulk("x\n")) == partial
    print("  기본: item 에러 무시 (HTTP 200 = 성공)  OK")

    strict = Transport(
        LoadConfig(index_name="b", servers=SERVERS[:1], strict=True),
        clients={SERVERS[0]: es},
    )
    try:
        asyncio.run(strict.bulk("x\n"))
        assert False, "Should have raised"
    except BulkItemError as e:
        assert e.status == 400
        assert "1건" in str(e)
        assert isinstance(e, TransportFailure)
    assert es.bulk.await_count == 2  # strict 실패는 재시도하지 않음
    print("  strict: BulkItemError (재시도 없음)  OK")

    print("  PASS\n")


if __name__ == "__main__":
    test_selector()
    test_retry_policy()
    test_build_es_client()
    test_transport_perform()
    test_bulk_strict_mode()

    print("=" * 60)
    print("ALL transport EXAMPLES PASSED")
    print("=" * 60)
