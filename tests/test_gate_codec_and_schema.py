from __future__ import annotations

import pytest
from google.protobuf import descriptor_pb2

from qfarm_autopilot.services.protocol.errors import ProtocolError
from qfarm_autopilot.services.protocol.gate_codec import (
    REQUEST,
    MessagePB,
    decode_event_message,
    decode_gate_message,
    encode_event,
    encode_request,
)
from qfarm_autopilot.services.protocol.rpc import GameRpc
from qfarm_autopilot.services.protocol.schema import DescriptorSetRegistry

_F = descriptor_pb2.FieldDescriptorProto


def _field(msg, name: str, number: int, ftype: int, *, repeated: bool = False, type_name: str = "") -> None:
    f = msg.field.add(
        name=name,
        number=number,
        type=ftype,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
    )
    if type_name:
        f.type_name = type_name


def _plant_descriptor_set(with_service: bool = False) -> descriptor_pb2.FileDescriptorSet:
    fdp = descriptor_pb2.FileDescriptorProto(name="plantpb_test.proto", package="gamepb.plantpb", syntax="proto3")

    req = fdp.message_type.add(name="HarvestRequest")
    _field(req, "land_ids", 1, _F.TYPE_INT64, repeated=True)
    _field(req, "host_gid", 2, _F.TYPE_INT64)
    _field(req, "is_all", 3, _F.TYPE_BOOL)

    land = fdp.message_type.add(name="LandInfo")
    _field(land, "id", 1, _F.TYPE_INT64)
    _field(land, "unlocked", 2, _F.TYPE_BOOL)

    reply = fdp.message_type.add(name="HarvestReply")
    _field(reply, "land", 1, _F.TYPE_MESSAGE, repeated=True, type_name=".gamepb.plantpb.LandInfo")

    notify = fdp.message_type.add(name="LandsNotify")
    _field(notify, "lands", 1, _F.TYPE_MESSAGE, repeated=True, type_name=".gamepb.plantpb.LandInfo")
    _field(notify, "host_gid", 2, _F.TYPE_INT64)

    if with_service:
        svc = fdp.service.add(name="PlantService")
        svc.method.add(
            name="Reap",
            input_type=".gamepb.plantpb.HarvestRequest",
            output_type=".gamepb.plantpb.HarvestReply",
        )

    return descriptor_pb2.FileDescriptorSet(file=[fdp])


def test_request_envelope_roundtrip_keeps_meta():
    data = encode_request("gamepb.plantpb.PlantService", "Harvest", b"\x01\x02", client_seq=42, server_seq=17)
    parsed = decode_gate_message(data)

    assert parsed.meta.service_name == "gamepb.plantpb.PlantService"
    assert parsed.meta.method_name == "Harvest"
    assert parsed.meta.message_type == REQUEST
    assert parsed.meta.client_seq == 42
    assert parsed.meta.server_seq == 17
    assert parsed.meta.error_code == 0
    assert parsed.body == b"\x01\x02"


def test_decode_rejects_garbage_and_missing_meta():
    with pytest.raises(ProtocolError):
        decode_gate_message(b"bad-payload")
    with pytest.raises(ProtocolError):
        decode_gate_message(MessagePB(body=b"x").SerializeToString())


def test_event_message_roundtrip():
    message_type, body = decode_event_message(encode_event("gamepb.plantpb.LandsNotify", b"abc"))
    assert message_type == "gamepb.plantpb.LandsNotify"
    assert body == b"abc"


def test_registry_resolves_types_by_naming_convention():
    registry = DescriptorSetRegistry(_plant_descriptor_set())

    body = registry.encode_request(
        "gamepb.plantpb.PlantService",
        "Harvest",
        {"land_ids": [5, 9], "host_gid": 1001, "is_all": True, "unknown_field": 1},
    )
    cls = registry._message_class("gamepb.plantpb.HarvestRequest")
    msg = cls()
    msg.ParseFromString(body)
    assert list(msg.land_ids) == [5, 9]
    assert msg.host_gid == 1001
    assert msg.is_all is True

    reply_cls = registry._message_class("gamepb.plantpb.HarvestReply")
    reply = reply_cls()
    reply.land.add(id=5, unlocked=True)
    decoded = registry.decode_reply("gamepb.plantpb.PlantService", "Harvest", reply.SerializeToString())
    # int64 经 json_format 变成字符串，默认值字段省略
    assert decoded == {"land": [{"id": "5", "unlocked": True}]}


def test_registry_prefers_service_descriptor_and_overrides():
    registry = DescriptorSetRegistry(
        _plant_descriptor_set(with_service=True).SerializeToString(),
        overrides={("gamepb.plantpb.PlantService", "Steal"): ("gamepb.plantpb.HarvestRequest", "gamepb.plantpb.HarvestReply")},
    )

    assert registry._resolve("gamepb.plantpb.PlantService", "Reap") == (
        "gamepb.plantpb.HarvestRequest",
        "gamepb.plantpb.HarvestReply",
    )
    assert registry._resolve("gamepb.plantpb.PlantService", "Steal")[0] == "gamepb.plantpb.HarvestRequest"
    assert registry._resolve("gamepb.plantpb.PlantService", "WeedOut") == (
        "gamepb.plantpb.WeedOutRequest",
        "gamepb.plantpb.WeedOutReply",
    )


def test_registry_unknown_type_raises_protocol_error():
    registry = DescriptorSetRegistry(_plant_descriptor_set())
    with pytest.raises(ProtocolError):
        registry.encode_request("gamepb.plantpb.PlantService", "WeedOut", {})


def test_registry_decodes_events_by_full_name():
    registry = DescriptorSetRegistry(_plant_descriptor_set())
    cls = registry._message_class("gamepb.plantpb.LandsNotify")
    notify = cls(host_gid=0)
    notify.lands.add(id=3)

    payload = registry.decode_event("gamepb.plantpb.LandsNotify", notify.SerializeToString())
    assert payload == {"lands": [{"id": "3"}]}


class _EchoSession:
    def __init__(self, reply: bytes) -> None:
        self.reply = reply
        self.calls: list[tuple[str, str, bytes, float]] = []

    async def call(self, service: str, method: str, body: bytes, timeout_sec: float | None = None) -> bytes:
        self.calls.append((service, method, body, timeout_sec))
        return self.reply


@pytest.mark.asyncio
async def test_game_rpc_encodes_calls_and_decodes_reply():
    registry = DescriptorSetRegistry(_plant_descriptor_set())
    reply_cls = registry._message_class("gamepb.plantpb.HarvestReply")
    reply = reply_cls()
    reply.land.add(id=9)
    session = _EchoSession(reply.SerializeToString())
    rpc = GameRpc(session, registry, rpc_timeout_sec=7)  # type: ignore[arg-type]

    result = await rpc.call("gamepb.plantpb.PlantService", "Harvest", {"land_ids": [9], "host_gid": 1})

    assert result == {"land": [{"id": "9"}]}
    service, method, _, timeout = session.calls[0]
    assert (service, method, timeout) == ("gamepb.plantpb.PlantService", "Harvest", 7)
