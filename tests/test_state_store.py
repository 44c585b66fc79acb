from __future__ import annotations

from qfarm_autopilot.services.runtime.log_sink import RuntimeLog
from qfarm_autopilot.services.state_store import LOG_MAX_ENTRIES, SNAPSHOT_LOG_LIMIT, RuntimeStateStore


class _ClockMs:
    def __init__(self) -> None:
        self.now = 1_760_000_000_000

    def __call__(self) -> int:
        return self.now


def test_duplicate_log_suppressed_within_window():
    clock = _ClockMs()
    store = RuntimeStateStore(clock_ms=clock)

    assert store.add_log("农场", "没有土地数据") is True
    clock.now += 1500
    assert store.add_log("农场", "没有土地数据") is False
    # 不同 tag 不算重复
    assert store.add_log("好友", "没有土地数据") is True

    clock.now += 2500
    assert store.add_log("农场", "没有土地数据") is True
    assert len(store.logs) == 3


def test_snapshot_returns_newest_logs_first_and_capped():
    clock = _ClockMs()
    store = RuntimeStateStore(clock_ms=clock)
    for idx in range(SNAPSHOT_LOG_LIMIT + 20):
        clock.now += 10
        store.add_log("系统", f"第{idx}条", level="warn" if idx % 2 else "info")

    state = store.get_state()

    assert len(state["logs"]) == SNAPSHOT_LOG_LIMIT
    assert state["logs"][0]["message"] == f"第{SNAPSHOT_LOG_LIMIT + 19}条"
    assert state["logs"][0]["isWarn"] is True
    assert state["logs"][1]["isWarn"] is False
    assert len(store.logs) == SNAPSHOT_LOG_LIMIT + 20 <= LOG_MAX_ENTRIES


def test_revision_bumps_on_every_change():
    store = RuntimeStateStore()
    start = store.revision

    store.set_user({"gid": 1})
    store.set_lands([{"id": 1}])
    store.set_connected(True)
    store.set_server_time(123)

    assert store.revision == start + 3
    state = store.get_state()
    assert state["user"] == {"gid": 1}
    assert state["isConnected"] is True
    assert state["serverTime"] == 123


def test_runtime_log_keeps_debug_out_of_store():
    store = RuntimeStateStore()
    log = RuntimeLog(store)
    child = log.child("网络")

    child.debug("帧解析细节")
    child.info("连接成功")
    child.warning("连接断开", code=1006)

    rows = list(store.logs)
    assert [(r["tag"], r["message"], r["level"]) for r in rows] == [
        ("网络", "连接断开", "warn"),
        ("网络", "连接成功", "info"),
    ]
    assert rows[0]["meta"] == {"code": 1006}
