"""재시도 정책 (지수 백오프)"""

import asyncio
import logging
from functools import wraps
from typing import Callable

from rich.markup import escape

logger = logging.getLogger(__name__)


class RetryConfig:
    """재시도 설정. max_retries는 최초 시도를 포함한 총 시도 횟수."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        exponential: bool = True,
        max_backoff: float = 60.0,
    ):
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.exponential = exponential
        self.max_backoff = max_backoff

    @classmethod
    def from_config(cls, config) -> "RetryConfig":
        return cls(
            max_retries=config.max_retries,
            initial_backoff=config.retry_backoff,
            exponential=config.retry_exponential,
            max_backoff=config.retry_max_backoff,
        )

    def backoff(self, attempt: int) -> float:
        """attempt번째 실패 후 대기 시간 (초). 1s → 2s → 4s → ..."""
        if not self.exponential:
            return self.initial_backoff
        return min(self.initial_backoff * (2 ** (attempt - 1)), self.max_backoff)

    def __repr__(self) -> str:
        curve = "×2^n" if self.exponential else ""
        return f"RetryConfig({self.max_retries}회, 백오프 {self.initial_backoff}s{curve})"


def async_with_retry(
    retry_config: RetryConfig,
    retry_if: Callable[[Exception], bool] = lambda e: True,
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable = asyncio.sleep,
):
    """
    비동기 재시도 데코레이터.

    retry_if(e)가 False인 예외는 즉시 전파 (예: 4xx 응답).
    재시도를 모두 소진하면 마지막 예외를 그대로 전파.

    사용 예:
        @async_with_retry(RetryConfig(max_retries=3), retry_if=is_transient)
        async def send():
            return await es.bulk(operations=payload)
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, retry_config.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not retry_if(e) or attempt >= retry_config.max_retries:
                        raise

                    backoff = retry_config.backoff(attempt)
                    if on_retry:
                        on_retry(attempt, e)
                    logger.warning(
                        f"[yellow]재시도 대기[/yellow] "
                        f"({attempt}/{retry_config.max_retries}) "
                        f"{backoff:.1f}초 후 재시도... error: {escape(str(e))}"
                    )
                    await sleep(backoff)

        return wrapper

    return decorator
