from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Mapping
from datetime import date
from typing import Any

from ..domain.analytics_service import AnalyticsService
from ..domain.config_data import GameConfigData
from ..domain.farm_service import FarmService
from ..domain.friend_service import FriendService
from ..domain.quota_tracker import QuotaTracker
from ..domain.user_service import DeviceInfo, UserService
from ..domain.warehouse_service import EXP_ITEM_IDS, GOLD_ITEM_IDS, WarehouseService
from ..protocol import (
    GameRpc,
    GatewaySession,
    GatewaySessionConfig,
    HeartbeatMonitor,
    NotifyDispatcher,
    NotifyEvent,
    NotifyKind,
    SchemaRegistry,
    ServerClock,
    SessionClosed,
)
from ..state_sink import HttpStateSink, StateSyncError
from ..state_store import RuntimeStateStore
from .context import PlayerState, RuntimeContext
from .debounce import Debouncer
from .farm_orchestrator import FarmOrchestrator
from .friend_orchestrator import FriendOrchestrator
from .log_sink import RuntimeLog
from .settings import AutomationSettings


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return int(default)


class AccountRuntime:
    """单账号运行时：连接、登录、心跳、推送处理和各个定时循环。

    会话异常断开后不会重连，``run_until_closed`` 返回关闭原因，由调用方决定退出码。
    """

    FARM_START_DELAY_SEC = 2.0
    FRIEND_START_DELAY_SEC = 5.0
    APPLICATION_CHECK_DELAY_SEC = 3.0
    SELL_START_DELAY_SEC = 10.0

    def __init__(
        self,
        code: str,
        *,
        session_config: GatewaySessionConfig,
        registry: SchemaRegistry,
        config_data: GameConfigData,
        settings: AutomationSettings | None = None,
        sink: HttpStateSink | None = None,
        logger: Any | None = None,
        device_info: DeviceInfo | None = None,
        heartbeat_interval_sec: float = 25,
        publish_interval_sec: float = 3,
        today_fn: Callable[[], date] = date.today,
    ) -> None:
        self.code = str(code or "").strip()
        self.session_config = session_config
        self.sink = sink
        self.device_info = device_info
        self.publish_interval_sec = max(0.5, float(publish_interval_sec))

        store = RuntimeStateStore()
        log = RuntimeLog(store, logger)
        self.dispatcher = NotifyDispatcher(logger=log.child("推送"))
        self.session = GatewaySession(session_config, logger=log.child("网络"), notify_dispatcher=self.dispatcher)
        rpc = GameRpc(self.session, registry, rpc_timeout_sec=int(session_config.rpc_timeout_sec))
        self.dispatcher.decoder = rpc.decode_event
        analytics = AnalyticsService(config_data)
        quota = QuotaTracker(today_fn=today_fn, on_log=log.info)

        self.ctx = RuntimeContext(
            session=self.session,
            rpc=rpc,
            clock=ServerClock(),
            quota=quota,
            config_data=config_data,
            farm=FarmService(rpc, config_data, analytics, logger=log.child("农场")),
            friend=FriendService(rpc, config_data, quota),
            warehouse=WarehouseService(rpc, config_data, logger=log.child("仓库")),
            analytics=analytics,
            log=log,
            store=store,
            settings=settings or AutomationSettings(),
            player=PlayerState(),
        )
        self.user = UserService(rpc)
        self.farm_runner = FarmOrchestrator(self.ctx)
        self.friend_runner = FriendOrchestrator(self.ctx)
        self.debouncer = Debouncer()
        self.heartbeat = HeartbeatMonitor(
            self.session,
            self._send_heartbeat,
            interval_sec=heartbeat_interval_sec,
            on_reply=self._on_heartbeat_reply,
            logger=log.child("心跳"),
        )

        self.running = False
        self._tasks: set[asyncio.Task] = set()
        self._published_revision = -1
        store.set_settings(self.ctx.settings.to_dict())

    @property
    def log(self) -> RuntimeLog:
        return self.ctx.log

    @property
    def store(self) -> RuntimeStateStore:
        return self.ctx.store

    @property
    def player(self) -> PlayerState:
        return self.ctx.player

    async def start(self) -> None:
        if self.running:
            return
        if not self.code:
            raise RuntimeError("登录 code 为空")
        self.running = True
        try:
            await self.session.start(code=self.code)
            self.store.set_connected(True)
            await self._subscribe()
            await self._login()
        except BaseException:
            self.running = False
            await self.session.stop()
            self.store.set_connected(False)
            raise

        self._spawn(self.heartbeat.run())
        self._spawn(self._farm_loop())
        self._spawn(self._friend_loop())
        self._spawn(self._delayed(self.APPLICATION_CHECK_DELAY_SEC, self.friend_runner.check_applications))
        self._spawn(self._sell_loop())
        if self.sink is not None:
            self._spawn(self._publish_loop())

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self.debouncer.cancel()
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self.session.stop()
        self.store.set_connected(False)
        if self.sink is not None:
            await self.sink.close()

    async def run_until_closed(self) -> SessionClosed:
        info = await self.session.wait_closed()
        if info.abnormal:
            self.log.warn("系统", f"连接异常关闭: {info.reason}")
        else:
            self.log.info("系统", f"连接已关闭: {info.reason}")
        await self.stop()
        return info

    def apply_settings(self, update: Mapping[str, Any] | None) -> bool:
        new_settings = self.ctx.settings.merged(update)
        if new_settings == self.ctx.settings:
            return False
        self.ctx.settings = new_settings
        self.store.set_settings(new_settings.to_dict())
        self.log.info("配置", "已应用新的运行配置")
        return True

    async def _login(self) -> None:
        result = await self.user.login(self.device_info)
        ctx = self.ctx
        ctx.clock.sync(result.server_time_ms)
        if result.server_time_ms:
            self.store.set_server_time(result.server_time_ms)
        ctx.player.gid = result.gid
        ctx.player.name = result.name
        ctx.player.level = result.level
        ctx.player.gold = result.gold
        ctx.player.exp = result.exp
        ctx.publish_user()
        self.log.info("登录", f"登录成功: {result.name} (GID:{result.gid}) Lv{result.level} 金币{result.gold}")

    async def _send_heartbeat(self) -> dict[str, Any]:
        return await self.user.heartbeat(self.ctx.player.gid, self.session_config.client_version)

    def _on_heartbeat_reply(self, reply: dict[str, Any]) -> None:
        server_time = _to_int(reply.get("server_time"), 0)
        if server_time > 0:
            self.ctx.clock.sync(server_time)
            self.store.set_server_time(server_time)

    async def _subscribe(self) -> None:
        await self.dispatcher.on(NotifyKind.LANDS, self._on_lands)
        await self.dispatcher.on(NotifyKind.ITEM, self._on_item)
        await self.dispatcher.on(NotifyKind.BASIC, self._on_basic)
        await self.dispatcher.on(NotifyKind.KICKOUT, self._on_kickout)
        await self.dispatcher.on(NotifyKind.FRIEND_APPLICATION, self._on_friend_application)
        await self.dispatcher.on(NotifyKind.FRIEND_ADDED, self._on_friend_added)
        await self.dispatcher.on(NotifyKind.GOODS_UNLOCK, self._on_goods_unlock)
        await self.dispatcher.on(NotifyKind.TASK_INFO, self._on_task_info)

    # 推送处理运行在接收循环里，需要发 RPC 的动作必须另起任务，否则会等不到回包

    def _on_lands(self, event: NotifyEvent) -> None:
        payload = event.payload
        if not payload.get("lands"):
            return
        host_gid = _to_int(payload.get("host_gid"), 0)
        if host_gid not in (0, self.ctx.player.gid):
            return
        if not self.ctx.settings.farm_push:
            return
        if self.debouncer.trigger(self._push_farm_cycle, busy=lambda: self.farm_runner.running):
            self.log.debug("农场", f"收到土地推送 ({len(payload['lands'])} 块)，触发巡田")

    def _push_farm_cycle(self) -> None:
        if self.running:
            self._spawn(self.farm_runner.run_cycle())

    def _on_item(self, event: NotifyEvent) -> None:
        player = self.ctx.player
        changed = False
        for change in event.payload.get("items") or []:
            item = change.get("item") or {}
            item_id = _to_int(item.get("id"), 0)
            count = _to_int(item.get("count"), 0)
            if item_id in EXP_ITEM_IDS:
                player.exp = count
                changed = True
            elif item_id in GOLD_ITEM_IDS:
                player.gold = count
                changed = True
        if changed:
            self.ctx.publish_user()

    def _on_basic(self, event: NotifyEvent) -> None:
        basic = event.payload.get("basic") or {}
        if not basic:
            return
        player = self.ctx.player
        old_level = player.level
        player.level = _to_int(basic.get("level"), 0) or player.level
        player.gold = _to_int(basic.get("gold"), 0) or player.gold
        exp = _to_int(basic.get("exp"), 0)
        if exp > 0:
            player.exp = exp
        self.ctx.publish_user()
        if player.level != old_level:
            self.log.info("系统", f"升级! Lv{old_level} → Lv{player.level}")

    async def _on_kickout(self, event: NotifyEvent) -> None:
        reason = str(event.payload.get("reason_message") or "未知")
        self.log.warn("推送", f"被踢下线! 原因: {reason}")
        self.store.set_connected(False)
        await self.session.close("kickout", abnormal=False)

    def _on_friend_application(self, event: NotifyEvent) -> None:
        applications = list(event.payload.get("applications") or [])
        if not applications:
            return
        names = ", ".join(str(a.get("name") or f"GID:{_to_int(a.get('gid'))}") for a in applications)
        self.log.info("申请", f"收到 {len(applications)} 个好友申请: {names}")
        self._spawn(self.friend_runner.accept([_to_int(a.get("gid"), 0) for a in applications]))

    def _on_friend_added(self, event: NotifyEvent) -> None:
        friends = list(event.payload.get("friends") or [])
        if friends:
            names = ", ".join(str(f.get("name") or f.get("remark") or f"GID:{_to_int(f.get('gid'))}") for f in friends)
            self.log.info("好友", f"新好友: {names}")

    def _on_goods_unlock(self, event: NotifyEvent) -> None:
        goods = list(event.payload.get("goods_list") or [])
        if goods:
            self.log.info("商店", f"解锁 {len(goods)} 个新商品!")

    def _on_task_info(self, event: NotifyEvent) -> None:
        self.log.debug("任务", "任务状态更新")

    async def _farm_loop(self) -> None:
        await asyncio.sleep(self.FARM_START_DELAY_SEC)
        while self.running:
            await self.farm_runner.run_cycle()
            await asyncio.sleep(self.ctx.settings.farm_check_interval)

    async def _friend_loop(self) -> None:
        await asyncio.sleep(self.FRIEND_START_DELAY_SEC)
        while self.running:
            if self.ctx.settings.auto_friend_visit:
                await self.friend_runner.run_cycle()
            await asyncio.sleep(self.ctx.settings.friend_check_interval)

    async def _sell_loop(self) -> None:
        await asyncio.sleep(self.SELL_START_DELAY_SEC)
        while self.running:
            if self.ctx.settings.auto_sell:
                await self.sell_fruits()
            await asyncio.sleep(self.ctx.settings.sell_interval)

    async def sell_fruits(self) -> int:
        try:
            result = await self.ctx.warehouse.sell_all_fruits()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.warn("仓库", f"出售失败: {e}")
            return 0
        sold = _to_int(result.get("soldKinds"), 0)
        if sold > 0:
            gold = _to_int(result.get("goldEarned"), 0)
            self.log.info("仓库", f"出售 {', '.join(result.get('names') or [])}，获得 {gold} 金币")
        return sold

    async def _publish_loop(self) -> None:
        while self.running:
            await self.publish_state()
            await asyncio.sleep(self.publish_interval_sec)

    async def publish_state(self) -> bool:
        if self.sink is None or self.store.revision == self._published_revision:
            return False
        self._published_revision = self.store.revision
        try:
            update = await self.sink.publish(self.store.get_state())
        except asyncio.CancelledError:
            raise
        except (StateSyncError, asyncio.TimeoutError) as e:
            self.log.debug("同步", f"状态同步失败: {e}")
            return False
        if update:
            self.apply_settings(update)
        return True

    async def _delayed(self, delay_sec: float, func: Callable[[], Coroutine[Any, Any, Any]]) -> None:
        await asyncio.sleep(delay_sec)
        if self.running:
            await func()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
