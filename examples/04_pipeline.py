#!/usr/bin/env python3
"""
es_bulkload 예시 4 — 워커 풀 / 디스패처 / 전체 실행 (Fake Transport)

테스트 항목:
  1. dispatch — N 라인 → 정확히 N 문서 (중복/누락 없음), 배치 크기 준수
  2. skip_broken — 깨진 라인 1개 스킵 + 로그, 나머지 적재
  3. skip 비활성 — 첫 깨진 라인에서 중단, 이후 문서 미전송
  4. 처리량 — 고정 지연 transport 로 wall time ≈ 배치수 × 지연 / 워커수
  5. iter_lines — 공백 라인 제거, gzip 입력, stdin UTF-8, 없는 파일 즉시 에러
  6. 느린 입력 소스 — 읽기 대기가 이벤트 루프를 막지 않음
  7. run_load_async — 준비 → 적재 → 복원, 워커 실패 시에도 두 서버 복원
"""

import asyncio
import gzip
import json
import logging
import tempfile
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from es_bulkload import (
    LoadConfig,
    MalformedLineError,
    RunStats,
    Transport,
    TransportFailure,
    dispatch,
    iter_lines,
    run_load_async,
    setup_logging,
)

SERVERS = ("http://es01:9200", "http://es02:9200")


class FakeTransport:
    """bulk 페이로드를 해석해 받은 문서를 기록. latency 초만큼 대기."""

    def __init__(self, latency: float = 0.0, fail_after: int | None = None):
        self.latency = latency
        self.fail_after = fail_after
        self.docs: list[dict] = []
        self.batch_sizes: list[int] = []
        self.done_at: list[float] = []

    async def bulk(self, payload: str):
        if self.fail_after is not None and len(self.batch_sizes) >= self.fail_after:
            raise TransportFailure("bulk 실패 (시뮬레이션)", status=503)
        if self.latency:
            await asyncio.sleep(self.latency)
        rows = payload.split("\n")[:-1]
        assert len(rows) % 2 == 0
        for meta, source in zip(rows[::2], rows[1::2]):
            assert "index" in json.loads(meta)
            self.docs.append(json.loads(source))
        self.batch_sizes.append(len(rows) // 2)
        self.done_at.append(time.perf_counter())
        return {"errors": False, "items": []}


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


def test_dispatch_no_loss():
    """dispatch: 중복/누락 없음"""
    print("=" * 60)
    print("[1] dispatch — 1000 라인, batch=7, workers=5")
    print("=" * 60)

    config = LoadConfig(index_name="books", batch_size=7, workers=5)
    lines = [json.dumps({"n": i}) for i in range(1000)]
    transport = FakeTransport()
    stats = RunStats()

    total = asyncio.run(dispatch(lines, config, transport, stats))

    assert total == 1000
    assert sorted(d["n"] for d in transport.docs) == list(range(1000))
    assert stats.processed == 1000
    assert stats.batches == len(transport.batch_sizes)
    assert max(transport.batch_sizes) <= 7
    # 워커마다 마지막 부분 배치만 7 미만일 수 있음
    assert sum(1 for s in transport.batch_sizes if s < 7) <= config.workers
    print(f"  문서 {len(transport.docs)}건, 배치 {len(transport.batch_sizes)}개  OK")

    empty = FakeTransport()
    assert asyncio.run(dispatch([], config, empty, RunStats())) == 0
    assert empty.batch_sizes == []
    print("  빈 입력 → bulk 요청 없음  OK")

    print("  PASS\n")


def test_skip_broken():
    """skip_broken: 깨진 라인 스킵"""
    print("=" * 60)
    print("[2] skip_broken=True")
    print("=" * 60)

    lines = [json.dumps({"n": i}) for i in range(10)]
    lines[4] = "not json"

    handler = _ListHandler()
    pipeline_logger = logging.getLogger("es_bulkload.pipeline")
    pipeline_logger.addHandler(handler)
    try:
        config = LoadConfig(index_name="books", batch_size=3, workers=2, skip_broken=True)
        transport = FakeTransport()
        stats = RunStats()
        asyncio.run(dispatch(lines, config, transport, stats))
    finally:
        pipeline_logger.removeHandler(handler)

    assert len(transport.docs) == 9
    assert stats.processed == 9
    assert stats.skipped == 1
    skips = [r for r in handler.records if "skipped line" in r.getMessage()]
    assert len(skips) == 1
    assert "not json" in skips[0].getMessage()
    print(f"  적재 {stats.processed}건, 스킵 {stats.skipped}건 (로그 1건)  OK")

    # Rich 콘솔 핸들러가 붙은 상태: markup 태그처럼 보이는 라인도 스킵만 되어야 함
    setup_logging()
    lines[4] = "oops [/]"
    lines[7] = "[bold]not closed"
    config = LoadConfig(index_name="books", batch_size=3, workers=2, skip_broken=True)
    transport = FakeTransport()
    stats = RunStats()
    asyncio.run(dispatch(lines, config, transport, stats))
    assert len(transport.docs) == 8
    assert stats.skipped == 2
    print("  RichHandler + '[/]' 라인 → 스킵 로그 후 계속  OK")

    print("  PASS\n")


def test_broken_line_is_fatal():
    """skip 비활성: 깨진 라인에서 중단"""
    print("=" * 60)
    print("[3] skip_broken=False")
    print("=" * 60)

    lines = [json.dumps({"n": i}) for i in range(10)]
    lines[3] = "not json"

    config = LoadConfig(index_name="books", batch_size=2, workers=1)
    transport = FakeTransport()
    try:
        asyncio.run(dispatch(lines, config, transport, RunStats()))
        assert False, "Should have raised"
    except MalformedLineError as e:
        assert e.line == "not json"

    # 0,1 은 첫 배치로 전송됨, 2 는 깨진 라인과 같은 배치라 폐기
    assert [d["n"] for d in transport.docs] == [0, 1]
    print(f"  MalformedLineError, 전송된 문서 {len(transport.docs)}건 (첫 배치만)  OK")

    transport = FakeTransport()
    config = LoadConfig(index_name="books", batch_size=5, workers=1)
    try:
        asyncio.run(dispatch(lines, config, transport, RunStats()))
        assert False, "Should have raised"
    except MalformedLineError:
        pass
    assert transport.docs == []
    print("  batch=5: 전송된 문서 0건  OK")

    failing = FakeTransport(fail_after=2)
    config = LoadConfig(index_name="books", batch_size=10, workers=3)
    try:
        asyncio.run(dispatch([json.dumps({"n": i}) for i in range(500)], config, failing, RunStats()))
        assert False, "Should have raised"
    except TransportFailure as e:
        assert e.status == 503
    print("  bulk 최종 실패 → TransportFailure 전파  OK")

    print("  PASS\n")


def test_throughput():
    """처리량: 고정 지연 transport"""
    print("=" * 60)
    print("[4] 처리량 — latency=50ms, 400 라인, batch=10, workers=4")
    print("=" * 60)

    latency, n_lines, batch, workers = 0.05, 400, 10, 4
    config = LoadConfig(index_name="books", batch_size=batch, workers=workers)
    transport = FakeTransport(latency=latency)
    stats = RunStats()
    lines = [json.dumps({"n": i}) for i in range(n_lines)]

    asyncio.run(dispatch(lines, config, transport, stats))
    stats.finish()

    expected = n_lines / batch * latency / workers
    assert stats.processed == n_lines
    assert expected * 0.9 <= stats.elapsed <= expected * 2.0, (stats.elapsed, expected)
    assert abs(stats.rate - n_lines / stats.elapsed) < 1e-6
    print(f"  elapsed={stats.elapsed:.3f}s (기대 {expected:.3f}s), rate={stats.rate:,.0f} docs/s  OK")

    print("  PASS\n")


def test_iter_lines():
    """iter_lines: 텍스트 / gzip"""
    print("=" * 60)
    print("[5] iter_lines")
    print("=" * 60)

    content = '{"a": 1}\n\n   \n  {"b": 2}  \n{"c": "한글"}'
    with tempfile.TemporaryDirectory() as td:
        plain = Path(td) / "docs.ndjson"
        plain.write_text(content, encoding="utf-8")
        assert list(iter_lines(plain)) == ['{"a": 1}', '{"b": 2}', '{"c": "한글"}']
        print("  텍스트: 공백 라인 제거 + strip  OK")

        gz = Path(td) / "docs.ndjson.gz"
        with gzip.open(gz, "wt", encoding="utf-8") as f:
            f.write(content)
        assert list(iter_lines(gz)) == ['{"a": 1}', '{"b": 2}', '{"c": "한글"}']

        no_suffix = Path(td) / "docs.bin"
        no_suffix.write_bytes(gz.read_bytes())
        assert len(list(iter_lines(no_suffix, gzipped=True))) == 3
        print("  gzip: .gz 확장자 / gzipped=True  OK")

        # stdin ("-") 은 로케일과 무관하게 UTF-8
        with open(plain, "rb") as raw, patch("sys.stdin", raw):
            assert list(iter_lines("-")) == ['{"a": 1}', '{"b": 2}', '{"c": "한글"}']
        with open(gz, "rb") as raw, patch("sys.stdin", raw):
            assert list(iter_lines("-", gzipped=True))[-1] == '{"c": "한글"}'
        print("  stdin: UTF-8 디코딩 (텍스트 / gzip)  OK")

        # 파일은 호출 시점에 열림 → 없는 파일은 라인을 읽기 전에 에러
        try:
            iter_lines(Path(td) / "missing.ndjson")
            assert False, "Should have raised"
        except FileNotFoundError:
            pass
        print("  없는 파일 → iter_lines 호출 즉시 FileNotFoundError  OK")

    print("  PASS\n")


def test_slow_source():
    """느린 입력: 라인 읽기가 bulk 진행을 막지 않음"""
    print("=" * 60)
    print("[6] 느린 입력 소스 — 읽기 대기 중에도 bulk 완료")
    print("=" * 60)

    resumed_at = []

    def slow_lines():
        for i in range(4):
            yield json.dumps({"n": i})
        time.sleep(0.3)  # 파이프가 잠시 멈춘 stdin
        resumed_at.append(time.perf_counter())
        for i in range(4, 8):
            yield json.dumps({"n": i})

    config = LoadConfig(index_name="books", batch_size=2, workers=2)
    transport = FakeTransport(latency=0.05)
    asyncio.run(dispatch(slow_lines(), config, transport, RunStats()))

    assert sorted(d["n"] for d in transport.docs) == list(range(8))
    # 앞의 두 배치는 입력이 멈춘 동안 이미 완료
    early = [t for t in transport.done_at if t < resumed_at[0]]
    assert len(early) == 2, (transport.done_at, resumed_at)
    print(f"  입력 재개 전 완료된 bulk {len(early)}건  OK")

    print("  PASS\n")


def fake_es(events: list, server: str) -> MagicMock:
    es = MagicMock()
    es.close = AsyncMock()
    es.indices = MagicMock()
    es.indices.exists = AsyncMock(return_value=True)
    es.indices.create = AsyncMock()
    es.indices.delete = AsyncMock()
    es.indices.put_mapping = AsyncMock()
    es.indices.get_settings = AsyncMock(
        return_value={"books": {"settings": {"index": {"number_of_replicas": "1"}}}}
    )

    async def put_settings(index, settings):
        events.append((server, "put_settings", settings["index"]))

    async def flush(index):
        events.append((server, "flush"))

    es.indices.put_settings = AsyncMock(side_effect=put_settings)
    es.indices.flush = AsyncMock(side_effect=flush)
    es.bulk = AsyncMock(return_value={"errors": False, "items": []})
    return es


def test_run_load_async():
    """run_load_async: 전체 흐름 + 실패 시 복원"""
    print("=" * 60)
    print("[7] run_load_async — 두 서버")
    print("=" * 60)

    events = []
    clients = {s: fake_es(events, s) for s in SERVERS}
    config = LoadConfig(
        index_name="books", servers=SERVERS, batch_size=4, workers=3,
        purge=True, mapping='{"properties": {"n": {"type": "long"}}}', seed=42,
    )
    transport = Transport(config, clients=clients)
    lines = [json.dumps({"n": i}) for i in range(50)]

    stats = asyncio.run(run_load_async(config, lines, transport=transport))

    assert stats.processed == 50
    sent = sum(
        len(call.kwargs["operations"].split("\n")[:-1]) // 2
        for es in clients.values() for call in es.bulk.await_args_list
    )
    assert sent == 50
    assert all(es.bulk.await_count > 0 for es in clients.values())
    primary = clients[SERVERS[0]]
    primary.indices.delete.assert_awaited_once_with(index="books")
    primary.indices.put_mapping.assert_awaited_once()
    for server in SERVERS:
        assert (server, "flush") in events
    # transport를 넘겼으면 닫지 않음
    for es in clients.values():
        es.close.assert_not_awaited()
    print(f"  {stats.processed}건 적재, 두 서버로 분산, purge/mapping/flush  OK")

    # 워커 실패 → 두 서버 모두 복원
    events.clear()
    clients = {s: fake_es(events, s) for s in SERVERS}
    config = LoadConfig(index_name="books", servers=SERVERS, batch_size=4, workers=2)
    transport = Transport(config, clients=clients)
    broken = [json.dumps({"n": i}) for i in range(20)] + ["not json"]
    try:
        asyncio.run(run_load_async(config, broken, transport=transport))
        assert False, "Should have raised"
    except MalformedLineError:
        pass
    for server in SERVERS:
        assert (server, "put_settings", {"refresh_interval": "-1"}) in events
        assert (server, "put_settings", {"refresh_interval": "1s"}) in events
        assert (server, "put_settings", {"number_of_replicas": "1"}) in events
        assert (server, "flush") in events
    print("  워커 실패 → 예외 전파 + 두 서버 설정 복원  OK")

    try:
        asyncio.run(run_load_async(LoadConfig(), [], transport=transport))
        assert False, "Should have raised"
    except ValueError as e:
        assert "index name" in str(e)
    print("  index 미지정 → ValueError (요청 없음)  OK")

    print("  PASS\n")


if __name__ == "__main__":
    test_dispatch_no_loss()
    test_skip_broken()
    test_broken_line_is_fatal()
    test_throughput()
    test_iter_lines()
    test_slow_source()
    test_run_load_async()

    print("=" * 60)
    print("ALL pipeline EXAMPLES PASSED")
    print("=" * 60)
