"""요청 단위 서버 선택"""

import random
from typing import Sequence


class ServerSelector:
    """
    설정된 서버 중 하나를 요청마다 균등 확률로 선택.

    난수 소스는 인스턴스가 소유 (seed 지정 시 선택 순서 재현 가능).
    서버 상태는 추적하지 않음 — 장애는 transport 에러로 드러난다.
    """

    def __init__(self, servers: Sequence[str], seed: int | None = None):
        if not servers:
            raise ValueError("최소 1개의 서버가 필요합니다")
        self.servers = tuple(servers)
        self._rng = random.Random(seed)

    def choose(self) -> str:
        if len(self.servers) == 1:
            return self.servers[0]
        return self._rng.choice(self.servers)

    def __len__(self) -> int:
        return len(self.servers)
