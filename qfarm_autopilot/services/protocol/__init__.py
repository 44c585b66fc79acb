"""QFarm protocol layer."""

from .clock import ServerClock, to_time_sec
from .errors import GatewaySessionError, ProtocolError, RemoteError, RequestTimeoutError, TransportError
from .heartbeat import HeartbeatMonitor
from .notify_dispatcher import NotifyDispatcher, NotifyEvent, NotifyKind, classify_notify
from .rpc import GameRpc
from .schema import DescriptorSetRegistry, SchemaRegistry
from .session import GatewaySession, GatewaySessionConfig, SessionClosed, SessionState

__all__ = [
    "DescriptorSetRegistry",
    "GameRpc",
    "GatewaySession",
    "GatewaySessionConfig",
    "GatewaySessionError",
    "HeartbeatMonitor",
    "NotifyDispatcher",
    "NotifyEvent",
    "NotifyKind",
    "ProtocolError",
    "RemoteError",
    "RequestTimeoutError",
    "SchemaRegistry",
    "ServerClock",
    "SessionClosed",
    "SessionState",
    "TransportError",
    "classify_notify",
    "to_time_sec",
]
