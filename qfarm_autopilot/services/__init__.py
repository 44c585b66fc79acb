"""qfarm_autopilot service layer."""

__all__ = [
    "domain",
    "protocol",
    "runtime",
    "state_sink",
    "state_store",
]
