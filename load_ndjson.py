#!/usr/bin/env python3
# load_ndjson.py
"""
NDJSON → Elasticsearch 벌크 적재 (CLI 엔트리포인트)

실행:
  # 로컬 단일 노드, stdin 입력
  cat docs.ndjson | python load_ndjson.py --index books

  # gzip 파일 + id 필드 + 워커/배치 조정
  python load_ndjson.py --index books -z --id isbn -w 8 --size 2000 docs.ndjson.gz

  # 여러 서버 + Basic Auth + 적재 중 replicas=0
  python load_ndjson.py --index books \\
      --server http://es01:9200 --server http://es02:9200 \\
      -u elastic:changeme --zero-replica docs.ndjson

  # 기존 인덱스 삭제 후 매핑 적용
  python load_ndjson.py --index books --purge --mapping mapping.json docs.ndjson
"""

import argparse
import os
import sys
from pathlib import Path

from rich.markup import escape

from es_bulkload import LoadConfig, __version__, get_logger, parse_basic_auth, run_load
from es_bulkload.config import DEFAULT_SERVER

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NDJSON → Elasticsearch bulk loader"
    )
    parser.add_argument("file", nargs="?", default="-", help="입력 파일 (기본: stdin)")
    parser.add_argument("-v", "--version", action="version", version=__version__)

    # ── 인덱스 ──
    index = parser.add_argument_group("인덱스")
    index.add_argument("--index", default="", help="인덱스 이름 (필수)")
    index.add_argument("--type", dest="doc_type", default=None, help="doc type (ES 6 이하)")
    index.add_argument("--mapping", default=None, help="적재 전 적용할 매핑 (JSON 문자열 또는 파일)")
    index.add_argument("--purge", action="store_true", help="적재 전 기존 인덱스 삭제")
    index.add_argument("--id", dest="id_field", default=None, help="_id로 쓸 필드 (기본: 자동 생성)")
    index.add_argument("--pipeline", default=None, help="ingest pipeline 이름")
    index.add_argument(
        "--refresh-interval", default="1s",
        help="적재 후 복원할 refresh_interval (default: 1s)",
    )
    index.add_argument(
        "--zero-replica", action="store_true",
        help="적재 중 number_of_replicas=0 (종료 시 원래 값 복원)",
    )

    # ── 서버 ──
    server = parser.add_argument_group("서버")
    server.add_argument(
        "--server", action="append", default=None,
        help=f"Elasticsearch 서버 URL, 여러 번 지정 가능 (default: {DEFAULT_SERVER})",
    )
    server.add_argument("-u", dest="user", default=None, help="http basic auth username:password")
    server.add_argument("--timeout", type=float, default=60.0, help="요청 타임아웃 (초)")

    # ── 처리 ──
    proc = parser.add_argument_group("처리")
    proc.add_argument("--size", dest="batch_size", type=int, default=1000, help="bulk 배치 크기")
    proc.add_argument("-w", dest="workers", type=int, default=os.cpu_count() or 4, help="워커 수")
    proc.add_argument("-z", dest="gzipped", action="store_true", help="gzip 입력 해제")
    proc.add_argument("--skip-broken", action="store_true", help="깨진 JSON 라인을 건너뜀")
    proc.add_argument(
        "--strict", action="store_true",
        help="bulk 응답의 item 단위 에러를 실패로 처리",
    )

    # ── 재시도 ──
    retry = parser.add_argument_group("재시도")
    retry.add_argument("--max-retries", type=int, default=3, help="요청당 최대 시도 횟수 (default: 3)")
    retry.add_argument(
        "--retry-backoff", type=float, default=1.0,
        help="첫 재시도 대기 시간 (초, 이후 ×2 지수 백오프, default: 1.0)",
    )

    # ── 로그 ──
    parser.add_argument("--verbose", action="store_true", help="상세 진행 로그")
    parser.add_argument("--log-file", type=Path, default=None, help="로그 파일 경로")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        username, password = parse_basic_auth(args.user)
        config = LoadConfig(
            index_name=args.index,
            doc_type=args.doc_type,
            mapping=args.mapping,
            purge=args.purge,
            servers=tuple(args.server or [DEFAULT_SERVER]),
            username=username,
            password=password,
            request_timeout=args.timeout,
            batch_size=args.batch_size,
            workers=args.workers,
            id_field=args.id_field,
            pipeline=args.pipeline,
            skip_broken=args.skip_broken,
            strict=args.strict,
            gzipped=args.gzipped,
            refresh_interval=args.refresh_interval,
            zero_replica=args.zero_replica,
            max_retries=args.max_retries,
            retry_backoff=args.retry_backoff,
            verbose=args.verbose,
            log_path=args.log_file,
        ).validate()
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        run_load(config, args.file)
    except Exception as e:
        logger.error(f"[bold red]적재 실패[/bold red]: {escape(str(e))}", exc_info=config.verbose)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
