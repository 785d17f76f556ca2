"""적재 구간의 인덱스 설정 관리

적재 전 (서버별):
    settings 조회 → 복원 콜백 등록 → refresh_interval=-1 → (옵션) replicas=0
적재 후 (성공/실패 무관, 등록 역순):
    refresh_interval 복원 → number_of_replicas 복원 → flush

복원 콜백은 서버마다 설정을 바꾸기 직전에 AsyncExitStack에 등록한다.
두 번째 서버에서 실패해도 첫 번째 서버의 복원은 실행된다.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from rich.markup import escape

from .config import LoadConfig
from .indexer import IndexAdmin
from .log import get_logger

logger = get_logger("lifecycle")


@dataclass
class ServerSettingsSnapshot:
    server: str
    number_of_replicas: str | None
    refresh_interval: str | None = None  # 원래 값 (참고용, 복원은 config 값)


async def take_snapshot(admin: IndexAdmin, server: str) -> ServerSettingsSnapshot:
    settings = await admin.get_settings(server)
    snapshot = ServerSettingsSnapshot(
        server=server,
        number_of_replicas=settings.get("number_of_replicas"),
        refresh_interval=settings.get("refresh_interval"),
    )
    logger.debug(
        f"{server}: 종료 시 number_of_replicas={snapshot.number_of_replicas} 로 복원 예정"
    )
    return snapshot


async def restore(admin: IndexAdmin, config: LoadConfig, snapshot: ServerSettingsSnapshot):
    """refresh_interval → number_of_replicas → flush 순서로 복원."""
    server = snapshot.server
    logger.info(
        f"설정 복원 ({server}): refresh_interval={config.refresh_interval}, "
        f"number_of_replicas={snapshot.number_of_replicas}"
    )
    try:
        await admin.put_settings(server, {"refresh_interval": config.refresh_interval})
        if snapshot.number_of_replicas is not None:
            await admin.put_settings(
                server, {"number_of_replicas": snapshot.number_of_replicas}
            )
        await admin.flush(server)
    except Exception as e:
        logger.error(f"[red]설정 복원 실패[/red] ({server}): {escape(str(e))}")
        raise


@asynccontextmanager
async def bulk_settings(
    admin: IndexAdmin, config: LoadConfig
) -> AsyncIterator[list[ServerSettingsSnapshot]]:
    """
    적재 구간을 감싸는 async context manager.

    사용 예:
        async with bulk_settings(admin, config):
            await dispatch(...)
    """
    snapshots: list[ServerSettingsSnapshot] = []
    async with AsyncExitStack() as stack:
        for server in config.servers:
            snapshot = await take_snapshot(admin, server)
            snapshots.append(snapshot)
            stack.push_async_callback(restore, admin, config, snapshot)

            await admin.put_settings(server, {"refresh_interval": "-1"})
            if config.zero_replica:
                await admin.put_settings(server, {"number_of_replicas": 0})
            logger.info(
                f"적재 설정 ({server}): refresh_interval=-1"
                + (", number_of_replicas=0" if config.zero_replica else "")
            )

        yield snapshots
