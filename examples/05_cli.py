#!/usr/bin/env python3
"""
es_bulkload 예시 5 — CLI 인자 → LoadConfig (run_load는 Mock)

테스트 항목:
  1. 기본 인자 / 여러 서버 / Basic Auth / 처리 옵션
  2. 설정 오류 — index 누락, 잘못된 -u → 종료 코드 2
  3. 적재 실패 → 종료 코드 1
  4. 없는 입력 파일 → 인덱스 준비 전에 종료 코드 1
"""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import load_ndjson
from es_bulkload import TransportFailure, setup_logging


def test_cli_config():
    """CLI 인자 매핑"""
    print("=" * 60)
    print("[1] CLI → LoadConfig")
    print("=" * 60)

    with patch("load_ndjson.run_load") as run:
        rc = load_ndjson.main(["--index", "books"])
        assert rc == 0
        config, source = run.call_args.args
        assert config.index_name == "books"
        assert config.servers == ("http://localhost:9200",)
        assert config.refresh_interval == "1s"
        assert source == "-"
        print(f"  기본: {config.servers}, source=stdin  OK")

        rc = load_ndjson.main([
            "--index", "books", "docs.ndjson.gz", "-z",
            "--server", "http://es01:9200", "--server", "http://es02:9200",
            "-u", "elastic:changeme", "--id", "isbn", "--size", "2000", "-w", "8",
            "--pipeline", "enrich", "--zero-replica", "--skip-broken", "--strict",
            "--refresh-interval", "30s", "--max-retries", "5", "--purge",
            "--retry-backoff", "0.5", "--log-file", "load.log",
        ])
        assert rc == 0
        config, source = run.call_args.args
        assert source == "docs.ndjson.gz"
        assert config.gzipped is True
        assert config.servers == ("http://es01:9200", "http://es02:9200")
        assert (config.username, config.password) == ("elastic", "changeme")
        assert config.id_field == "isbn"
        assert config.batch_size == 2000
        assert config.workers == 8
        assert config.pipeline == "enrich"
        assert config.zero_replica and config.skip_broken and config.strict and config.purge
        assert config.refresh_interval == "30s"
        assert config.max_retries == 5
        assert config.retry_backoff == 0.5
        assert config.log_path == Path("load.log")
        print("  전체 옵션 매핑  OK")

    print("  PASS\n")


def test_cli_errors():
    """설정 오류 / 적재 실패 종료 코드"""
    print("=" * 60)
    print("[2] CLI 종료 코드")
    print("=" * 60)

    with patch("load_ndjson.run_load") as run:
        assert load_ndjson.main([]) == 2
        assert load_ndjson.main(["--index", "books", "-u", "no-colon"]) == 2
        assert load_ndjson.main(["--index", "books", "--size", "0"]) == 2
        run.assert_not_called()
        print("  index 누락 / -u 형식 / size=0 → 2  OK")

        # 서버 응답 텍스트에 markup 태그처럼 보이는 문자열이 있어도 로그 출력 후 1
        setup_logging()
        run.side_effect = TransportFailure("bulk 실패: [/] [bold]", status=503)
        assert load_ndjson.main(["--index", "books"]) == 1
        print("  적재 실패 → 1  OK")

    print("  PASS\n")


def test_cli_missing_file():
    """없는 입력 파일: 인덱스 준비 전에 실패"""
    print("=" * 60)
    print("[3] 없는 입력 파일")
    print("=" * 60)

    with patch("es_bulkload.pipeline.run_load_async", new=AsyncMock()) as run_async:
        rc = load_ndjson.main(["--index", "books", "/nonexistent/docs.ndjson"])
        assert rc == 1
        run_async.assert_not_called()
    print("  FileNotFoundError → 1, 인덱스 요청 없음  OK")

    print("  PASS\n")


if __name__ == "__main__":
    test_cli_config()
    test_cli_errors()
    test_cli_missing_file()

    print("=" * 60)
    print("ALL cli EXAMPLES PASSED")
    print("=" * 60)
