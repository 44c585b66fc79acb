from __future__ import annotations

import asyncio
import enum
import itertools
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import aiohttp

from .errors import GatewaySessionError, ProtocolError, RemoteError, RequestTimeoutError, TransportError
from .gate_codec import NOTIFY, RESPONSE, decode_gate_message, encode_request
from .notify_dispatcher import NotifyDispatcher

ABNORMAL_CLOSE_CODE = 1006


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(slots=True, frozen=True)
class SessionClosed:
    code: int | None
    reason: str
    abnormal: bool


@dataclass(slots=True)
class GatewaySessionConfig:
    gateway_ws_url: str = "wss://gate-obt.nqf.qq.com/prod/ws"
    platform: str = "qq"
    os: str = "iOS"
    client_version: str = "1.6.0.14_20251224"
    rpc_timeout_sec: float = 10
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/132.0.0.0 Safari/537.36 "
        "MicroMessenger/7.0.20.1781(0x6700143B) NetType/WIFI "
        "MiniProgramEnv/Windows WindowsWechat/WMPF WindowsWechat(0x63090a13)"
    )
    origin: str = "https://gate-obt.nqf.qq.com"


class GatewaySession:
    """网关长连接，负责请求/响应配对。

    每次调用取下一个 ``client_seq``，并在挂起表里放一个 ``asyncio.Future``，
    回包按回显的 ``client_seq`` 兑现。会话不会自动重连：关闭后保持关闭，
    :meth:`wait_closed` 给出原因，退出还是重启由调用方决定。
    """

    def __init__(
        self,
        config: GatewaySessionConfig,
        *,
        logger: Any | None = None,
        notify_dispatcher: NotifyDispatcher | None = None,
    ) -> None:
        self.config = config
        self.logger = logger

        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._recv_task: asyncio.Task | None = None

        self._seq_counter = itertools.count(1)
        self._server_seq = 0
        self._pending: dict[int, asyncio.Future[bytes]] = {}
        self._send_lock = asyncio.Lock()
        self._close_lock = asyncio.Lock()
        self._state = SessionState.CLOSED
        self._closed_info: SessionClosed | None = None
        self._closed_event = asyncio.Event()

        self.notify_dispatcher = notify_dispatcher or NotifyDispatcher(logger=logger)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        ws = self._ws
        return bool(self._state is SessionState.OPEN and ws is not None and not ws.closed)

    @property
    def server_seq(self) -> int:
        return self._server_seq

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed_info(self) -> SessionClosed | None:
        return self._closed_info

    async def start(self, *, code: str) -> None:
        if self._state is not SessionState.CLOSED:
            return
        if not code:
            raise GatewaySessionError("missing login code")
        self._state = SessionState.CONNECTING
        self._seq_counter = itertools.count(1)
        self._server_seq = 0
        self._pending.clear()
        self._closed_info = None
        self._closed_event = asyncio.Event()
        self._http = aiohttp.ClientSession(headers={"User-Agent": self.config.user_agent})
        url = self._build_ws_url(code=code)
        try:
            self._ws = await self._http.ws_connect(
                url,
                origin=self.config.origin,
                autoclose=True,
                autoping=True,
            )
        except Exception as e:
            await self._hard_close(SessionClosed(code=None, reason=f"connect failed: {e}", abnormal=True))
            raise TransportError(f"websocket connect failed: {e}") from e
        self._state = SessionState.OPEN
        self._recv_task = asyncio.create_task(self._recv_loop())

    async def stop(self) -> None:
        async with self._close_lock:
            await self._hard_close(SessionClosed(code=1000, reason="stopped", abnormal=False))

    async def close(self, reason: str, *, abnormal: bool = False) -> None:
        async with self._close_lock:
            await self._hard_close(SessionClosed(code=None, reason=reason, abnormal=abnormal))

    async def wait_closed(self) -> SessionClosed:
        await self._closed_event.wait()
        return self._closed_info or SessionClosed(code=None, reason="closed", abnormal=False)

    def next_client_seq(self) -> int:
        return next(self._seq_counter)

    async def call(self, service: str, method: str, body: bytes, timeout_sec: float | None = None) -> bytes:
        if not self.connected:
            raise TransportError(f"websocket is not connected: {service}.{method}")
        timeout = float(timeout_sec or self.config.rpc_timeout_sec)
        async with self._send_lock:
            ws = self._ws
            if ws is None or ws.closed or self._state is not SessionState.OPEN:
                raise TransportError(f"websocket is closed: {service}.{method}")
            seq = self.next_client_seq()
            payload = encode_request(
                service,
                method,
                body,
                client_seq=seq,
                server_seq=self._server_seq,
            )
            fut: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
            self._pending[seq] = fut
            try:
                await ws.send_bytes(payload)
            except Exception as e:
                self._pending.pop(seq, None)
                raise TransportError(f"send failed: {service}.{method}: {e}") from e
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError as e:
            self._pending.pop(seq, None)
            raise RequestTimeoutError(
                f"request timeout: {service}.{method} (seq={seq}, pending={len(self._pending)})"
            ) from e

    def fail_all_pending(self, error_factory: Any = None, reason: str = "pending calls flushed") -> int:
        pending = list(self._pending.items())
        self._pending.clear()
        make = error_factory or (lambda: GatewaySessionError(reason))
        failed = 0
        for _, fut in pending:
            if not fut.done():
                fut.set_exception(make())
                failed += 1
        return failed

    async def _recv_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        info: SessionClosed | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.BINARY:
                    try:
                        await self._handle_binary(bytes(msg.data))
                    except ProtocolError as e:
                        info = SessionClosed(code=None, reason=f"protocol error: {e}", abnormal=True)
                        break
                elif msg.type in {aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED}:
                    break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    info = SessionClosed(code=ABNORMAL_CLOSE_CODE, reason=f"transport error: {ws.exception()}", abnormal=True)
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            info = SessionClosed(code=ABNORMAL_CLOSE_CODE, reason=f"receive failed: {e}", abnormal=True)
        if info is None:
            code = ws.close_code
            info = SessionClosed(
                code=code,
                reason=f"websocket closed (code={code})",
                abnormal=code is None or int(code) == ABNORMAL_CLOSE_CODE,
            )
        self._recv_task = None
        async with self._close_lock:
            await self._hard_close(info)

    async def _handle_binary(self, data: bytes) -> None:
        parsed = decode_gate_message(data)
        meta = parsed.meta
        if meta.server_seq > self._server_seq:
            self._server_seq = meta.server_seq

        if meta.message_type == RESPONSE:
            fut = self._pending.pop(meta.client_seq, None)
            if fut is None or fut.done():
                if meta.error_code != 0:
                    self._warn(f"unmatched error response {meta.service_name}.{meta.method_name} code={meta.error_code} {meta.error_message}")
                return
            if meta.error_code != 0:
                fut.set_exception(RemoteError(meta.service_name, meta.method_name, meta.error_code, meta.error_message))
                return
            fut.set_result(parsed.body)
            return

        if meta.message_type == NOTIFY:
            if not parsed.body:
                return
            await self.notify_dispatcher.dispatch_raw(parsed.body)

    async def _hard_close(self, info: SessionClosed) -> None:
        if self._state is SessionState.CLOSED and self._ws is None and self._http is None:
            return
        self._state = SessionState.CLOSED
        if self._closed_info is None:
            self._closed_info = info
        self.fail_all_pending(lambda: TransportError(f"session closed: {info.reason}"))
        recv_task = self._recv_task
        self._recv_task = None
        if recv_task is not None and not recv_task.done() and recv_task is not asyncio.current_task():
            recv_task.cancel()
            try:
                await recv_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self._debug(f"recv loop ended with error: {e}")
        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except Exception as e:
                self._warn(f"websocket close failed: {e}")
        http = self._http
        self._http = None
        if http is not None and not http.closed:
            await http.close()
        self._closed_event.set()

    def _warn(self, message: str) -> None:
        if self.logger:
            self.logger.warning(message)

    def _debug(self, message: str) -> None:
        if self.logger:
            self.logger.debug(message)

    def _build_ws_url(self, *, code: str) -> str:
        query = urlencode(
            {
                "platform": self.config.platform,
                "os": self.config.os,
                "ver": self.config.client_version,
                "code": code,
                "openID": "",
            }
        )
        return f"{self.config.gateway_ws_url}?{query}"
