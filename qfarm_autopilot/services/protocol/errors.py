from __future__ import annotations


class GatewaySessionError(RuntimeError):
    pass


class TransportError(GatewaySessionError):
    """连接未打开时发送请求。"""


class ProtocolError(GatewaySessionError):
    """网关帧无法解码。"""


class RemoteError(GatewaySessionError):
    def __init__(self, service: str, method: str, code: int, message: str = "") -> None:
        self.service = str(service or "")
        self.method = str(method or "")
        self.code = int(code)
        self.message = str(message or "")
        super().__init__(f"{self.service}.{self.method} error={self.code} {self.message}".rstrip())


class RequestTimeoutError(GatewaySessionError, TimeoutError):
    pass
