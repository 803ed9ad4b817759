"""
Frame construction and parsing.

A frame is a JSON array of single-key objects, the key naming the message kind:

    [{"Ok": {"Id": 1}}, {"DeviceRemoved": {"Id": 0, "DeviceIndex": 3}}]
"""

import json
from typing import Any, Iterable, Union

from pydantic import ValidationError

from buttplug_client.errors import MessageError
from buttplug_client.models.messages import MESSAGE_TYPES, ButtplugMessage, UnknownMessage


def dump_message(message: ButtplugMessage) -> dict[str, Any]:
    """Wrap one message as a `{kind: fields}` object. Null fields are omitted."""
    if isinstance(message, UnknownMessage):
        return {message.kind: {"Id": message.id, **message.payload}}
    return {message.kind: message.model_dump(by_alias=True, exclude_none=True)}


def build_frame(messages: Iterable[ButtplugMessage]) -> str:
    """Serialize a batch of messages into one transport frame."""
    return json.dumps([dump_message(m) for m in messages])


def parse_frame(raw: Union[str, bytes]) -> list[Any]:
    """Split a frame into its raw envelopes without decoding them. Bytes must be UTF-8."""
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MessageError(f"Frame is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise MessageError(f"Frame must be a JSON array, got {type(data).__name__}")
    return data


def parse_message(envelope: Any) -> ButtplugMessage:
    """Decode one `{kind: fields}` envelope into a typed message."""
    if not isinstance(envelope, dict) or len(envelope) != 1:
        raise MessageError("Envelope must be an object with exactly one key", details={"envelope": envelope})
    kind, body = next(iter(envelope.items()))
    if not isinstance(body, dict):
        raise MessageError(f"{kind}: message body must be an object", details={"envelope": envelope})

    cls = MESSAGE_TYPES.get(kind)
    try:
        if cls is None:
            fields = {k: v for k, v in body.items() if k != "Id"}
            return UnknownMessage(id=body.get("Id", 0), wire_kind=kind, payload=fields)
        return cls.model_validate(body)
    except ValidationError as e:
        raise MessageError(f"{kind}: invalid message: {e}", details={"envelope": envelope}) from e


def decode_frame(raw: Union[str, bytes]) -> list[ButtplugMessage]:
    """Decode a whole frame, failing on the first bad envelope."""
    return [parse_message(envelope) for envelope in parse_frame(raw)]
