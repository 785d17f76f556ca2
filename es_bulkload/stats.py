"""적재 진행 통계"""

import threading
import time
from typing import Callable

from .log import get_logger

logger = get_logger("stats")


class RunStats:
    """
    Thread-safe 적재 통계 (문서 수, 스킵 수, 재시도, 소요 시간).

    옵션:
        on_update:    업데이트마다 호출될 콜백 (예: Rich Progress bar)
        log_fn:       로그 함수 (기본: logger.info)
        log_interval: 진행 로그 간격 (문서 수, 기본: 100000)

    사용 예:
        stats = RunStats()
        stats.update(1000, bulk_ms=85.0)
        stats.finish()
        print(f"{stats.processed} docs at {stats.rate:.0f} docs/s")
    """

    def __init__(
        self,
        *,
        on_update: Callable[["RunStats", int, float], None] | None = None,
        log_fn: Callable[..., None] | None = None,
        log_interval: int = 100_000,
    ):
        self.processed = 0
        self.skipped = 0
        self.batches = 0
        self.retries = 0
        self.bulk_ms = 0.0

        self._lock = threading.Lock()
        self._start = time.perf_counter()
        self._end: float | None = None
        self._next_log = log_interval

        self._on_update = on_update
        self._log_fn = log_fn or logger.info
        self._log_interval = log_interval

    def update(self, count: int, bulk_ms: float = 0.0):
        """bulk 요청 1건 성공 기록."""
        with self._lock:
            self.processed += count
            self.batches += 1
            self.bulk_ms += bulk_ms
            n = self.processed
            should_log = n >= self._next_log
            if should_log:
                self._next_log = (n // self._log_interval + 1) * self._log_interval

        if self._on_update:
            self._on_update(self, count, bulk_ms)

        if should_log:
            self._log_fn(
                f"{n:>10,} docs  bulk=[cyan]{bulk_ms:.0f}ms[/cyan]  "
                f"avg=[green]{self.rate:,.0f} docs/s[/green]"
            )

    def record_skip(self):
        with self._lock:
            self.skipped += 1

    def record_retry(self):
        with self._lock:
            self.retries += 1

    def reset_clock(self):
        """측정 시작 시점을 지금으로 (준비 작업 시간 제외)."""
        self._start = time.perf_counter()
        self._end = None

    def finish(self):
        """경과 시간 고정. 이후 elapsed/rate는 변하지 않음."""
        self._end = time.perf_counter()

    @property
    def elapsed(self) -> float:
        end = self._end if self._end is not None else time.perf_counter()
        return end - self._start

    @property
    def rate(self) -> float:
        e = self.elapsed
        return self.processed / e if e > 0 else 0.0
