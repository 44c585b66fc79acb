from __future__ import annotations

import json
from typing import Any

import aiohttp


class StateSyncError(RuntimeError):
    """状态同步 HTTP 调用失败。"""


class HttpStateSink:
    """把运行时快照 POST 到外部面板。

    面板可以在响应里带上 ``settings``（或 ``data.settings``），调用方据此热更新配置。
    """

    def __init__(self, sync_url: str, *, timeout_sec: float = 2.0, logger: Any | None = None) -> None:
        self.sync_url = str(sync_url or "").strip()
        self.timeout_sec = max(0.1, float(timeout_sec))
        self.logger = logger
        self._session: aiohttp.ClientSession | None = None

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def publish(self, state: dict[str, Any]) -> dict[str, Any] | None:
        if not self.sync_url:
            return None
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
        try:
            async with session.post(self.sync_url, json=state, timeout=timeout) as resp:
                body = await self._read_response_body(resp)
                if resp.status >= 400:
                    raise StateSyncError(f"HTTP {resp.status}")
        except aiohttp.ClientError as e:
            raise StateSyncError(f"网络请求失败: {e}") from e
        return self._extract_settings(body)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    @staticmethod
    async def _read_response_body(resp: aiohttp.ClientResponse) -> Any:
        text = await resp.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    @staticmethod
    def _extract_settings(body: Any) -> dict[str, Any] | None:
        if not isinstance(body, dict):
            return None
        settings = body.get("settings")
        if settings is None and isinstance(body.get("data"), dict):
            settings = body["data"].get("settings")
        return settings if isinstance(settings, dict) and settings else None
