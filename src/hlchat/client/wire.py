"""Protobuf wire record for mesh chat messages.

The record carries no room; the room is implied by the content topic the
record was published on.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from hlchat.client.models import Message

_FIELDS = (
    ("timestamp", 1, descriptor_pb2.FieldDescriptorProto.TYPE_UINT64),
    ("address", 2, descriptor_pb2.FieldDescriptorProto.TYPE_STRING),
    ("content", 3, descriptor_pb2.FieldDescriptorProto.TYPE_STRING),
    ("signature", 4, descriptor_pb2.FieldDescriptorProto.TYPE_STRING),
    ("name", 5, descriptor_pb2.FieldDescriptorProto.TYPE_STRING),
    ("nonce", 6, descriptor_pb2.FieldDescriptorProto.TYPE_STRING),
)


def _build_chat_message_class() -> type:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="hlchat/chat_message.proto",
        package="hlchat",
        syntax="proto3",
    )
    message_proto = file_proto.message_type.add(name="ChatMessage")
    for name, number, field_type in _FIELDS:
        message_proto.field.add(
            name=name,
            number=number,
            type=field_type,
            label=descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL,
        )

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return message_factory.GetMessageClass(pool.FindMessageTypeByName("hlchat.ChatMessage"))


ChatMessageProto = _build_chat_message_class()


def encode_message(message: Message) -> bytes:
    """Serialize ``message`` into the mesh wire format."""
    record = ChatMessageProto(
        timestamp=message.timestamp,
        address=message.address,
        content=message.content,
        signature=message.signature,
        name=message.display_name or "",
        nonce=message.nonce,
    )
    return record.SerializeToString()


def decode_message(payload: bytes, room_id: str) -> Message:
    """Parse a mesh wire record published on ``room_id``'s topic.

    Raises:
        ValueError: If the payload is not a valid record or lacks a sender.
    """
    try:
        record = ChatMessageProto.FromString(payload)
    except DecodeError as err:
        raise ValueError(f"undecodable chat record: {err}") from err
    if not record.address:
        raise ValueError("chat record has no sender address")
    return Message(
        room=room_id,
        address=record.address,
        content=record.content,
        timestamp=int(record.timestamp),
        nonce=record.nonce,
        signature=record.signature,
        display_name=record.name or None,
    )
