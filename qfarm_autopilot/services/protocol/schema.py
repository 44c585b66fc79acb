from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf import json_format
from google.protobuf.message import DecodeError
from google.protobuf.message_factory import GetMessageClass

from .errors import ProtocolError


class SchemaRegistry(Protocol):
    """(service, method) -> 请求/响应编解码。"""

    def encode_request(self, service: str, method: str, payload: Mapping[str, Any]) -> bytes: ...

    def decode_reply(self, service: str, method: str, body: bytes) -> dict[str, Any]: ...

    def decode_event(self, type_name: str, body: bytes) -> dict[str, Any]: ...


class DescriptorSetRegistry:
    """基于 protoc ``FileDescriptorSet`` 的 SchemaRegistry。

    描述集由 ``protoc --include_imports --descriptor_set_out`` 生成，文件按依赖顺序排列。
    消息体以 dict 形式进出，键为 proto 字段名；64 位整数按 json_format 规则以字符串返回，
    调用方用 ``int()`` 归一；枚举保持整数；取默认值的字段不出现。

    请求/回包类型优先取 ``overrides`` 中 ``(service, method)`` 到
    ``(request_type, reply_type)`` 的显式映射，其次取描述集里的 service 定义，最后按
    ``<package>.<Method>Request`` / ``<package>.<Method>Reply`` 约定推导，
    ``<package>`` 为 service 名去掉最后一段。
    """

    def __init__(
        self,
        descriptor_set: descriptor_pb2.FileDescriptorSet | bytes,
        *,
        overrides: Mapping[tuple[str, str], tuple[str, str]] | None = None,
    ) -> None:
        if isinstance(descriptor_set, (bytes, bytearray)):
            fds = descriptor_pb2.FileDescriptorSet()
            fds.ParseFromString(bytes(descriptor_set))
        else:
            fds = descriptor_set
        self._pool = descriptor_pool.DescriptorPool()
        for file_proto in fds.file:
            self._pool.AddSerializedFile(file_proto.SerializeToString())
        self._overrides = dict(overrides or {})
        self._classes: dict[str, type] = {}

    @classmethod
    def from_file(cls, path: Path | str, **kwargs: Any) -> DescriptorSetRegistry:
        return cls(Path(path).read_bytes(), **kwargs)

    def encode_request(self, service: str, method: str, payload: Mapping[str, Any]) -> bytes:
        request_type, _ = self._resolve(service, method)
        msg = self._message_class(request_type)()
        try:
            json_format.ParseDict(dict(payload or {}), msg, ignore_unknown_fields=True)
        except json_format.ParseError as e:
            raise ProtocolError(f"{service}.{method} encode failed: {e}") from e
        return msg.SerializeToString()

    def decode_reply(self, service: str, method: str, body: bytes) -> dict[str, Any]:
        _, reply_type = self._resolve(service, method)
        return self._decode(reply_type, body)

    def decode_event(self, type_name: str, body: bytes) -> dict[str, Any]:
        return self._decode(str(type_name or "").strip(), body)

    def _decode(self, type_name: str, body: bytes) -> dict[str, Any]:
        msg = self._message_class(type_name)()
        try:
            msg.ParseFromString(body or b"")
        except DecodeError as e:
            raise ProtocolError(f"{type_name} decode failed: {e}") from e
        return json_format.MessageToDict(msg, preserving_proto_field_name=True, use_integers_for_enums=True)

    def _resolve(self, service: str, method: str) -> tuple[str, str]:
        override = self._overrides.get((service, method))
        if override:
            return override
        try:
            svc = self._pool.FindServiceByName(service)
            m = svc.FindMethodByName(method)
            if m is not None:
                return m.input_type.full_name, m.output_type.full_name
        except KeyError:
            pass
        package = service.rsplit(".", 1)[0] if "." in service else ""
        prefix = f"{package}." if package else ""
        return f"{prefix}{method}Request", f"{prefix}{method}Reply"

    def _message_class(self, full_name: str) -> type:
        cls = self._classes.get(full_name)
        if cls is None:
            try:
                descriptor = self._pool.FindMessageTypeByName(full_name)
            except KeyError as e:
                raise ProtocolError(f"unknown message type: {full_name}") from e
            cls = GetMessageClass(descriptor)
            self._classes[full_name] = cls
        return cls
