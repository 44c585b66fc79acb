"""QFarm runtime components."""

from .account_runtime import AccountRuntime
from .context import PlayerState, RuntimeContext
from .debounce import Debouncer
from .farm_orchestrator import FarmOrchestrator
from .friend_orchestrator import FriendCycleTotals, FriendOrchestrator
from .log_sink import RuntimeLog, TaggedLogger
from .settings import AutomationSettings, load_settings_file

__all__ = [
    "AccountRuntime",
    "AutomationSettings",
    "Debouncer",
    "FarmOrchestrator",
    "FriendCycleTotals",
    "FriendOrchestrator",
    "PlayerState",
    "RuntimeContext",
    "RuntimeLog",
    "TaggedLogger",
    "load_settings_file",
]
