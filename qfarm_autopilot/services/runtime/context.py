from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..domain.analytics_service import AnalyticsService
from ..domain.config_data import GameConfigData
from ..domain.farm_service import FarmService
from ..domain.friend_service import FriendService
from ..domain.quota_tracker import QuotaTracker
from ..domain.warehouse_service import WarehouseService
from ..protocol.clock import ServerClock
from ..protocol.rpc import GameRpc
from ..protocol.session import GatewaySession
from ..state_store import RuntimeStateStore
from .log_sink import RuntimeLog
from .settings import AutomationSettings


@dataclass(slots=True)
class PlayerState:
    gid: int = 0
    name: str = ""
    level: int = 0
    gold: int = 0
    exp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"gid": self.gid, "name": self.name, "level": self.level, "gold": self.gold, "exp": self.exp}


@dataclass(slots=True)
class RuntimeContext:
    """一个账号运行时共享的全部可变状态，显式传给两个编排器。"""

    session: GatewaySession
    rpc: GameRpc
    clock: ServerClock
    quota: QuotaTracker
    config_data: GameConfigData
    farm: FarmService
    friend: FriendService
    warehouse: WarehouseService
    analytics: AnalyticsService
    log: RuntimeLog
    store: RuntimeStateStore
    settings: AutomationSettings = field(default_factory=AutomationSettings)
    player: PlayerState = field(default_factory=PlayerState)

    def publish_user(self) -> None:
        row = self.player.to_dict()
        row["expProgress"] = self.config_data.get_level_exp_progress(self.player.level, self.player.exp)
        self.store.set_user(row)

    def publish_quota(self) -> None:
        self.store.set_operation_limits(self.quota.snapshot())
