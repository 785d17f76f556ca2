"""NDJSON 벌크 적재 파이프라인 — 생산자 1개 + 워커 N개 + 핸드오프 큐

    라인 소스 → Queue(maxsize=1) → Worker × N → build_payload → Transport.bulk

큐: 생산자는 워커가 라인을 가져갈 때까지 대기 (backpressure).
종료: 입력이 끝나면 워커 수만큼 종료 신호를 넣고, 각 워커는 남은 배치를 보낸 뒤 종료.
실패: 워커 하나라도 최종 실패하면 나머지 태스크를 취소하고 예외 전파 (부분 진행 없음).

콘솔: RichHandler + Rich Progress,  파일: FileHandler (plain text)
"""

import asyncio
import gzip
import io
import sys
import time
from pathlib import Path
from typing import Iterable, Iterator

from rich.panel import Panel
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .builder import BulkAction, MalformedLineError, build_payload, make_action
from .config import LoadConfig
from .indexer import IndexAdmin, load_mapping
from .lifecycle import bulk_settings
from .log import console, get_logger, setup_logging
from .stats import RunStats
from .transport import Transport

logger = get_logger("pipeline")

_EOF = object()  # 큐 종료 신호


# ============================================================
# 라인 소스
# ============================================================
def _open_text(source, gzipped: bool):
    """텍스트 스트림 열기. stdin도 로케일과 무관하게 UTF-8로 디코딩 (fd는 닫지 않음)."""
    if source in (None, "-"):
        if gzipped:
            raw = open(sys.stdin.fileno(), "rb", closefd=False)
            return gzip.open(raw, "rt", encoding="utf-8")
        return open(sys.stdin.fileno(), encoding="utf-8", closefd=False)
    path = Path(source)
    if gzipped or path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, encoding="utf-8")


def _read_lines(f) -> Iterator[str]:
    try:
        for line in f:
            line = line.strip()
            if line:
                yield line
    finally:
        f.close()


def iter_lines(source, gzipped: bool = False) -> Iterator[str]:
    """
    파일 경로 (또는 "-" = stdin) 에서 공백 제거된 비어있지 않은 라인을 순서대로.

    파일은 호출 시점에 바로 연다. 없는 파일은 인덱스 준비 전에 FileNotFoundError.
    """
    return _read_lines(_open_text(source, gzipped))


# ============================================================
# Worker
# ============================================================
class Worker:
    """
    큐에서 라인을 받아 배치를 만들고, batch_size에 도달하면 bulk 전송.

    상태: accumulating → flushing → accumulating ...
          종료 신호 수신 시 draining → (남은 배치 flush) → 종료
    """

    def __init__(
        self,
        name: str,
        config: LoadConfig,
        queue: asyncio.Queue,
        transport: Transport,
        stats: RunStats,
    ):
        self.name = name
        self.config = config
        self.queue = queue
        self.transport = transport
        self.stats = stats

    async def run(self):
        batch: list[BulkAction] = []
        while True:
            line = await self.queue.get()
            if line is _EOF:
                break
            try:
                batch.append(make_action(line, self.config))
            except MalformedLineError as e:
                if not self.config.skip_broken:
                    raise
                self.stats.record_skip()
                logger.warning(
                    f"{self.name}: skipped line \\[{escape(e.line[:200])}] ({escape(e.reason)})"
                )
                continue
            if len(batch) >= self.config.batch_size:
                await self.flush(batch)
                batch = []

        if batch:
            await self.flush(batch)
        logger.debug(f"{self.name} 종료")

    async def flush(self, batch: list[BulkAction]):
        payload = build_payload(batch)
        t0 = time.perf_counter()
        await self.transport.bulk(payload)
        self.stats.update(len(batch), bulk_ms=(time.perf_counter() - t0) * 1000)


# ============================================================
# Dispatcher
# ============================================================
async def _produce(lines: Iterable[str], queue: asyncio.Queue, n_workers: int) -> int:
    """
    라인을 큐에 넣고 끝나면 워커 수만큼 종료 신호.

    라인 읽기는 블로킹 I/O (파일/gzip/stdin) 이므로 run_in_executor로 실행.
    느린 stdin을 기다리는 동안에도 워커의 bulk 요청/재시도 대기는 계속 진행된다.
    """
    loop = asyncio.get_running_loop()
    it = iter(lines)
    count = 0
    while True:
        line = await loop.run_in_executor(None, next, it, _EOF)
        if line is _EOF:
            break
        await queue.put(line)
        count += 1
    for _ in range(n_workers):
        await queue.put(_EOF)
    return count


async def dispatch(
    lines: Iterable[str],
    config: LoadConfig,
    transport: Transport,
    stats: RunStats,
) -> int:
    """
    워커 config.workers개를 띄우고 모든 라인이 전송될 때까지 대기.

    Returns: 큐에 넣은 라인 수 (스킵된 라인 포함)
    Raises:  워커/생산자에서 발생한 첫 번째 예외 (나머지 태스크는 취소)
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)
    workers = [
        Worker(f"worker-{i}", config, queue, transport, stats)
        for i in range(config.workers)
    ]
    producer = asyncio.create_task(_produce(lines, queue, len(workers)), name="producer")
    tasks = [producer] + [asyncio.create_task(w.run(), name=w.name) for w in workers]

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    for task in done:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return producer.result()


# ============================================================
# 전체 실행
# ============================================================
async def run_load_async(
    config: LoadConfig,
    lines: Iterable[str],
    transport: Transport | None = None,
    stats: RunStats | None = None,
) -> RunStats:
    """
    준비 (purge / 인덱스 생성 / 매핑) → 적재 설정 → 디스패치 → 설정 복원.

    transport를 넘기지 않으면 config 기반으로 생성하고 종료 시 닫는다.
    """
    config.validate()
    stats = stats or RunStats()
    own_transport = transport is None
    if own_transport:
        transport = Transport(config, on_retry=stats.record_retry)
    admin = IndexAdmin(transport, config.index_name)

    try:
        logger.info(f"[bold]\\[1/3] 인덱스 준비[/bold] ({len(config.servers)} server(s))")
        if config.purge:
            await admin.delete_index()
        await admin.ensure_index()
        if config.mapping:
            await admin.put_mapping(load_mapping(config.mapping))

        logger.info(
            f"[bold]\\[2/3] 적재[/bold] "
            f"(workers=[cyan]{config.workers}[/cyan], batch=[cyan]{config.batch_size}[/cyan], "
            f"{transport.retry_config})"
        )
        async with bulk_settings(admin, config):
            stats.reset_clock()
            total = await dispatch(lines, config, transport, stats)
            stats.finish()
            logger.info(
                f"{stats.processed:,} docs in {stats.elapsed:.2f}s "
                f"at {stats.rate:0.3f} docs/s with {config.workers} workers"
                + (f" ({stats.skipped} skipped of {total:,})" if stats.skipped else "")
            )
        logger.info("[bold]\\[3/3] 설정 복원 + flush 완료[/bold]")
    finally:
        if own_transport:
            await transport.close()

    return stats


def _create_progress() -> Progress:
    """전체 라인 수를 모르므로 total 없는 진행 표시"""
    return Progress(
        SpinnerColumn(),
        "[progress.description]{task.description}",
        BarColumn(bar_width=30),
        TextColumn("{task.completed:,} docs"),
        TextColumn("•"),
        TextColumn("[green]{task.fields[throughput]}[/]"),
        TextColumn("•"),
        TextColumn("[yellow]bulk={task.fields[last_bulk]}[/]"),
        TimeElapsedColumn(),
        console=console,
        transient=False,
    )


def _summary_table(config: LoadConfig, stats: RunStats) -> Table:
    table = Table(title="결과 요약", show_header=False, border_style="dim")
    table.add_column("항목", style="bold")
    table.add_column("값", justify="right", style="cyan")
    rows = [
        ("인덱스", config.index_name),
        ("도큐먼트 수", f"{stats.processed:,}"),
        ("bulk 요청", f"{stats.batches:,}"),
        ("Wall time", f"{stats.elapsed:.1f}초"),
        ("처리량", f"{stats.rate:,.0f} docs/sec"),
        ("workers", str(config.workers)),
    ]
    if stats.skipped:
        rows.append(("스킵된 라인", f"[yellow]{stats.skipped:,}[/]"))
    if stats.retries:
        rows.append(("재시도 횟수", f"{stats.retries}회"))
    for label, value in rows:
        table.add_row(label, value)
    return table


def run_load(config: LoadConfig, source=None) -> RunStats:
    """동기 래퍼 — 로깅/진행 표시 설정 후 적재 실행. source: 경로 또는 "-"/None (stdin)"""
    setup_logging(config.log_path, verbose=config.verbose)
    logger.debug(f"config: {escape(repr(config))}")
    console.print(
        Panel.fit(
            f"[bold]Bulk 적재[/] — {escape(config.index_name)}",
            border_style="green",
        )
    )

    progress = _create_progress()
    with progress:
        task_id = progress.add_task("Indexing", total=None, throughput="--", last_bulk="--")

        def on_update(stats: RunStats, count: int, bulk_ms: float):
            progress.update(
                task_id,
                advance=count,
                throughput=f"{stats.rate:,.0f} docs/s",
                last_bulk=f"{bulk_ms:.0f}ms",
            )

        stats = RunStats(on_update=on_update, log_fn=logger.info)
        lines = iter_lines(source, gzipped=config.gzipped)
        asyncio.run(run_load_async(config, lines, stats=stats))

    console.print(_summary_table(config, stats))
    return stats
