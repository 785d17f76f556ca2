"""벌크 로더 설정"""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SERVER = "http://localhost:9200"


def parse_basic_auth(value: str | None) -> tuple[str | None, str | None]:
    """curl -u 형식의 "username:password" 문자열을 분리.

    빈 값이면 (None, None). 콜론이 정확히 하나가 아니면 ValueError.
    """
    if not value:
        return None, None
    parts = value.split(":")
    if len(parts) != 2:
        raise ValueError("http basic auth 형식: username:password")
    return parts[0], parts[1]


@dataclass(frozen=True)
class LoadConfig:
    # 인덱스
    index_name: str = ""
    doc_type: str | None = None     # None → _type 생략 (ES 7+)
    mapping: str | None = None      # JSON 문자열 또는 파일 경로
    purge: bool = False             # 적재 전 인덱스 삭제

    # 서버
    servers: tuple[str, ...] = (DEFAULT_SERVER,)
    username: str | None = None     # Basic Auth 사용자명
    password: str | None = None     # Basic Auth 비밀번호
    request_timeout: float = 60.0

    # 처리
    batch_size: int = 1000
    workers: int = field(default_factory=lambda: os.cpu_count() or 4)
    id_field: str | None = None     # None → ES가 _id 자동 생성
    pipeline: str | None = None     # ingest pipeline 이름
    skip_broken: bool = False       # 깨진 JSON 라인을 건너뜀
    strict: bool = False            # bulk 응답의 item 단위 에러 검사
    gzipped: bool = False

    # 적재 중 인덱스 설정
    refresh_interval: str = "1s"    # 종료 시 복원할 refresh_interval
    zero_replica: bool = False      # 적재 중 number_of_replicas=0

    # 재시도
    max_retries: int = 3
    retry_backoff: float = 1.0
    retry_exponential: bool = True
    retry_max_backoff: float = 60.0

    # 기타
    seed: int | None = None         # 서버 선택 난수 시드 (테스트용)
    verbose: bool = False
    log_path: Path | None = None

    @property
    def has_auth(self) -> bool:
        return bool(self.username and self.password)

    def validate(self) -> "LoadConfig":
        """작업 시작 전에 설정 오류를 잡아낸다. 자기 자신을 반환."""
        if not self.index_name:
            raise ValueError("index name required")
        if not self.servers:
            raise ValueError("최소 1개의 서버가 필요합니다")
        if self.batch_size < 1:
            raise ValueError(f"batch_size는 1 이상이어야 합니다: {self.batch_size}")
        if self.workers < 1:
            raise ValueError(f"workers는 1 이상이어야 합니다: {self.workers}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries는 1 이상이어야 합니다: {self.max_retries}")
        return self

    def __repr__(self) -> str:
        # 비밀번호는 로그에 남기지 않음
        password = "***" if self.password else None
        return (
            f"LoadConfig(index={self.index_name!r}, type={self.doc_type!r}, "
            f"servers={list(self.servers)}, batch={self.batch_size}, "
            f"workers={self.workers}, id_field={self.id_field!r}, "
            f"pipeline={self.pipeline!r}, user={self.username!r}, "
            f"password={password}, skip_broken={self.skip_broken}, "
            f"strict={self.strict}, zero_replica={self.zero_replica}, "
            f"refresh_interval={self.refresh_interval!r}, "
            f"retries={self.max_retries})"
        )
