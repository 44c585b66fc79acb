from __future__ import annotations

from dataclasses import dataclass

from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf.message import DecodeError
from google.protobuf.message_factory import GetMessageClass

from .errors import ProtocolError

REQUEST = 1
RESPONSE = 2
NOTIFY = 3

_F = descriptor_pb2.FieldDescriptorProto


def _add_field(msg: descriptor_pb2.DescriptorProto, name: str, number: int, ftype: int, type_name: str = "") -> None:
    field = msg.field.add(name=name, number=number, type=ftype, label=_F.LABEL_OPTIONAL)
    if type_name:
        field.type_name = type_name


def _build_gate_pool() -> descriptor_pool.DescriptorPool:
    # 网关外壳协议：Message{meta, body}，Notify 的 body 为 EventMessage{message_type, body}
    fdp = descriptor_pb2.FileDescriptorProto(name="qfarm_gate.proto", package="gatepb", syntax="proto3")
    meta = fdp.message_type.add(name="Meta")
    _add_field(meta, "service_name", 1, _F.TYPE_STRING)
    _add_field(meta, "method_name", 2, _F.TYPE_STRING)
    _add_field(meta, "message_type", 3, _F.TYPE_INT32)
    _add_field(meta, "client_seq", 4, _F.TYPE_INT64)
    _add_field(meta, "server_seq", 5, _F.TYPE_INT64)
    _add_field(meta, "error_code", 6, _F.TYPE_INT64)
    _add_field(meta, "error_message", 7, _F.TYPE_STRING)

    message = fdp.message_type.add(name="Message")
    _add_field(message, "meta", 1, _F.TYPE_MESSAGE, ".gatepb.Meta")
    _add_field(message, "body", 2, _F.TYPE_BYTES)

    event = fdp.message_type.add(name="EventMessage")
    _add_field(event, "message_type", 1, _F.TYPE_STRING)
    _add_field(event, "body", 2, _F.TYPE_BYTES)

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(fdp.SerializeToString())
    return pool


_POOL = _build_gate_pool()
MetaPB = GetMessageClass(_POOL.FindMessageTypeByName("gatepb.Meta"))
MessagePB = GetMessageClass(_POOL.FindMessageTypeByName("gatepb.Message"))
EventMessagePB = GetMessageClass(_POOL.FindMessageTypeByName("gatepb.EventMessage"))


@dataclass(slots=True)
class GateMeta:
    service_name: str
    method_name: str
    message_type: int
    client_seq: int
    server_seq: int
    error_code: int = 0
    error_message: str = ""


@dataclass(slots=True)
class GateMessage:
    meta: GateMeta
    body: bytes


def encode_message(meta: GateMeta, body: bytes) -> bytes:
    msg = MessagePB(
        meta=MetaPB(
            service_name=meta.service_name,
            method_name=meta.method_name,
            message_type=int(meta.message_type),
            client_seq=int(meta.client_seq),
            server_seq=int(meta.server_seq),
            error_code=int(meta.error_code),
            error_message=meta.error_message,
        ),
        body=body or b"",
    )
    return msg.SerializeToString()


def encode_request(
    service_name: str,
    method_name: str,
    body: bytes,
    *,
    client_seq: int,
    server_seq: int,
) -> bytes:
    meta = GateMeta(
        service_name=service_name,
        method_name=method_name,
        message_type=REQUEST,
        client_seq=int(client_seq),
        server_seq=int(server_seq),
    )
    return encode_message(meta, body)


def encode_event(message_type: str, body: bytes) -> bytes:
    return EventMessagePB(message_type=str(message_type), body=body or b"").SerializeToString()


def decode_gate_message(data: bytes) -> GateMessage:
    raw = MessagePB()
    try:
        raw.ParseFromString(data)
    except DecodeError as e:
        raise ProtocolError(f"gate message decode failed: {e}") from e
    if not raw.HasField("meta"):
        raise ProtocolError("gate message missing meta")
    meta = GateMeta(
        service_name=raw.meta.service_name,
        method_name=raw.meta.method_name,
        message_type=int(raw.meta.message_type),
        client_seq=int(raw.meta.client_seq),
        server_seq=int(raw.meta.server_seq),
        error_code=int(raw.meta.error_code),
        error_message=raw.meta.error_message,
    )
    return GateMessage(meta=meta, body=bytes(raw.body or b""))


def decode_event_message(data: bytes) -> tuple[str, bytes]:
    event = EventMessagePB()
    try:
        event.ParseFromString(data)
    except DecodeError as e:
        raise ProtocolError(f"event message decode failed: {e}") from e
    return event.message_type, bytes(event.body or b"")
