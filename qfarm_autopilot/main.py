from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any

from .services.domain.config_data import GameConfigData
from .services.protocol import DescriptorSetRegistry, GatewaySessionConfig, SessionClosed
from .services.runtime import AccountRuntime, AutomationSettings, load_settings_file
from .services.state_sink import HttpStateSink

logger = logging.getLogger("qfarm_autopilot")

EXIT_OK = 0
EXIT_ABNORMAL = 1


def _env_str(key: str, default: str = "") -> str:
    value = os.environ.get(key)
    if value is None:
        return default
    return value.strip() or default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, default))
    except Exception:
        return float(default)


def _session_config_from_env(**overrides: Any) -> GatewaySessionConfig:
    defaults = GatewaySessionConfig()
    return GatewaySessionConfig(
        gateway_ws_url=overrides.get("gateway_ws_url") or _env_str("QFARM_GATEWAY_WS_URL", defaults.gateway_ws_url),
        platform=overrides.get("platform") or _env_str("QFARM_PLATFORM", defaults.platform),
        os=_env_str("QFARM_OS", defaults.os),
        client_version=overrides.get("client_version") or _env_str("QFARM_CLIENT_VERSION", defaults.client_version),
        rpc_timeout_sec=_env_float("QFARM_RPC_TIMEOUT_SEC", defaults.rpc_timeout_sec),
    )


def build_runtime(
    code: str | None = None,
    *,
    descriptor_set: Path | str | None = None,
    config_dir: Path | str | None = None,
    settings: AutomationSettings | None = None,
    settings_path: Path | str | None = None,
    sync_url: str | None = None,
    **session_overrides: Any,
) -> AccountRuntime:
    """按参数组装运行时；未给出的参数从 QFARM_* 环境变量读取。"""
    code = code or _env_str("QFARM_CODE")
    descriptor_set = descriptor_set or _env_str("QFARM_DESCRIPTOR_SET")
    if not descriptor_set:
        raise RuntimeError("未配置协议描述文件 (QFARM_DESCRIPTOR_SET)")
    config_dir = config_dir or _env_str("QFARM_CONFIG_DIR") or None
    if settings is None:
        settings = load_settings_file(settings_path or _env_str("QFARM_SETTINGS") or None)
    sync_url = sync_url if sync_url is not None else _env_str("QFARM_SYNC_URL")

    return AccountRuntime(
        code or "",
        session_config=_session_config_from_env(**session_overrides),
        registry=DescriptorSetRegistry.from_file(descriptor_set),
        config_data=GameConfigData(config_dir, logger=logger),
        settings=settings,
        sink=HttpStateSink(sync_url, logger=logger) if sync_url else None,
        logger=logger,
        heartbeat_interval_sec=_env_float("QFARM_HEARTBEAT_INTERVAL_SEC", 25),
    )


async def run(code: str | None = None, **kwargs: Any) -> int:
    """运行到连接关闭或收到退出信号；异常断开返回非零退出码。"""
    runtime = build_runtime(code, **kwargs)
    try:
        await runtime.start()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"启动失败: {e}")
        return EXIT_ABNORMAL

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"当前平台不支持信号处理: {sig}")

    closed_task = asyncio.create_task(runtime.run_until_closed())
    stop_task = asyncio.create_task(stop_requested.wait())
    try:
        await asyncio.wait({closed_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    if not closed_task.done():
        logger.info("收到退出信号，正在停止")
        await runtime.stop()
        info: SessionClosed = await closed_task
    else:
        info = closed_task.result()
    return EXIT_ABNORMAL if info.abnormal else EXIT_OK


def main() -> int:
    logging.basicConfig(
        level=_env_str("QFARM_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    return asyncio.run(run())


if __name__ == "__main__":
    raise SystemExit(main())
