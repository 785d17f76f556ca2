"""
패키지 통합 로깅 설정 (Rich console + plain-text file)

설계:
  - Console: RichHandler (colored, timestamps, markup 지원)
  - File:    FileHandler (plain text, Rich markup 자동 제거)
  - logger.info() 한 번 호출로 양쪽에 동시 출력

사용법:
    from .log import setup_logging, get_logger

    logger = get_logger("pipeline")     # es_bulkload.pipeline
    setup_logging(log_file=Path("load.log"), verbose=True)
"""

import logging
from pathlib import Path

from rich.console import Console
from rich.errors import MarkupError
from rich.logging import RichHandler
from rich.text import Text

PKG = "es_bulkload"

# Progress bar와 로그가 같은 콘솔을 공유해야 출력이 섞이지 않음
console = Console(stderr=True)


class _PlainFormatter(logging.Formatter):
    """Rich markup 태그를 제거하는 FileHandler용 Formatter.

    예: "[bold green]완료![/bold green]" → "완료!"
    """

    def format(self, record: logging.LogRecord) -> str:
        original_msg = record.msg
        try:
            record.msg = Text.from_markup(str(record.msg)).plain
        except (MarkupError, ValueError, KeyError, AttributeError):
            pass
        result = super().format(record)
        record.msg = original_msg
        return result


def setup_logging(
    log_file: Path | None = None,
    verbose: bool = False,
) -> logging.Logger:
    """
    패키지 루트 로거에 핸들러를 설정.

    - RichHandler: 첫 호출 시 1회만 추가
    - FileHandler: log_file 인자가 있을 때마다 추가

    Args:
        log_file: 로그 파일 경로 (None이면 콘솔만)
        verbose:  True면 DEBUG 레벨 (스킵된 라인, 설정 변경 등)
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(PKG)
    logger.setLevel(level)

    rich = next((h for h in logger.handlers if isinstance(h, RichHandler)), None)
    if rich is None:
        rich = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
            log_time_format="[%H:%M:%S]",
        )
        logger.addHandler(rich)
    rich.setLevel(level)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(_PlainFormatter("%(asctime)s  %(name)s  %(levelname)s  %(message)s"))
        fh.setLevel(level)
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    패키지 하위 로거 반환.

    예: get_logger("lifecycle") → logging.getLogger("es_bulkload.lifecycle")
    """
    return logging.getLogger(f"{PKG}.{name}")
