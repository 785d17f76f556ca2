"""Elasticsearch 요청 전송 — 서버별 클라이언트 + 재시도 + Basic Auth"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from elasticsearch import ApiError, AsyncElasticsearch, ConnectionTimeout
from elasticsearch import ConnectionError as ESConnectionError
from rich.markup import escape

from .config import LoadConfig
from .log import get_logger
from .retry import RetryConfig, async_with_retry
from .selector import ServerSelector

logger = get_logger("transport")

# 429 (rejected execution) 와 5xx 는 일시 장애로 보고 재시도
TOO_MANY_REQUESTS = 429


class TransportFailure(RuntimeError):
    """재시도 후에도 요청이 실패. 실행 전체를 중단시키는 에러."""

    def __init__(self, message: str, server: str | None = None, status: int | None = None):
        super().__init__(message)
        self.server = server
        self.status = status


class BulkItemError(TransportFailure):
    """HTTP 200 bulk 응답 안의 item 단위 실패 (strict 모드에서만)."""


def build_es_client(server: str, config: LoadConfig) -> AsyncElasticsearch:
    """서버 1대용 AsyncElasticsearch 클라이언트.

    클라이언트 자체 재시도는 끄고 (max_retries=0) Transport의 재시도 정책만 쓴다.
    """
    kwargs: dict = {
        "hosts": [server],
        "request_timeout": config.request_timeout,
        "max_retries": 0,
        "retry_on_timeout": False,
    }
    if config.has_auth:
        kwargs["basic_auth"] = (config.username, config.password)
    return AsyncElasticsearch(**kwargs)


def status_of(error: Exception) -> int | None:
    if isinstance(error, ApiError):
        return error.meta.status
    return None


def is_transient(error: Exception) -> bool:
    """연결 실패, 타임아웃, 429/5xx 만 재시도 대상."""
    if isinstance(error, (ESConnectionError, ConnectionTimeout)):
        return True
    status = status_of(error)
    return status is not None and (status == TOO_MANY_REQUESTS or status >= 500)


class Transport:
    """
    설정된 서버들에 대한 요청 전송.

    - server를 지정하면 그 서버로, 아니면 ServerSelector가 시도마다 선택
    - 재시도 횟수/백오프 곡선은 RetryConfig (호출부가 아닌 클라이언트 설정)
    - 4xx (429 제외) 는 재시도하지 않고 즉시 TransportFailure
    """

    def __init__(
        self,
        config: LoadConfig,
        selector: ServerSelector | None = None,
        clients: dict[str, AsyncElasticsearch] | None = None,
        on_retry: Callable[[], None] | None = None,
    ):
        self.config = config
        self.selector = selector or ServerSelector(config.servers, seed=config.seed)
        self.retry_config = RetryConfig.from_config(config)
        self.clients = clients or {
            server: build_es_client(server, config) for server in config.servers
        }
        self._on_retry = on_retry

    async def perform(
        self,
        call: Callable[[AsyncElasticsearch], Awaitable[Any]],
        server: str | None = None,
        what: str = "request",
    ) -> Any:
        """call(es)를 재시도 정책 하에 실행. 최종 실패 시 TransportFailure."""
        target = [server]

        def on_retry(attempt: int, error: Exception):
            if self._on_retry:
                self._on_retry()
            logger.debug(f"{what} 실패 ({target[0]}, 시도 {attempt}): {escape(str(error))}")

        @async_with_retry(self.retry_config, retry_if=is_transient, on_retry=on_retry)
        async def attempt():
            target[0] = server or self.selector.choose()
            return await call(self.clients[target[0]])

        try:
            return await attempt()
        except (ApiError, ESConnectionError, ConnectionTimeout) as e:
            status = status_of(e)
            raise TransportFailure(
                f"{what} 실패 (server={target[0]}, status={status}): {e}",
                server=target[0],
                status=status,
            ) from e

    async def bulk(self, payload: str) -> Any:
        """Bulk 요청 1회. strict 모드가 아니면 item 단위 에러는 검사하지 않음."""
        resp = await self.perform(
            lambda es: es.bulk(operations=payload),
            what="bulk",
        )
        body = getattr(resp, "body", resp)
        if self.config.strict and body.get("errors"):
            failed = [
                item for item in body.get("items", [])
                if next(iter(item.values()), {}).get("error")
            ]
            first = next(iter(failed[0].values())) if failed else {}
            raise BulkItemError(
                f"bulk 응답에 실패 item {len(failed)}건: {first.get('error')}",
                status=first.get("status"),
            )
        return resp

    async def close(self):
        for es in self.clients.values():
            await es.close()
