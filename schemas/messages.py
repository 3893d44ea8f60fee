import json
import re
from json.decoder import scanstring
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, TypeAdapter
from pydantic.alias_generators import to_camel

_WHITESPACE = re.compile(r"[ \t\n\r]*")
_decoder = json.JSONDecoder()


def _skip_whitespace(text: str, idx: int) -> int:
    return _WHITESPACE.match(text, idx).end()


def raw_object_members(text: str) -> Dict[str, str]:
    """Map each top-level key of a JSON object to the exact source text of its value.

    Duplicate keys resolve to the last occurrence. Raises ValueError if text is
    not a JSON object.
    """
    idx = _skip_whitespace(text, 0)
    if text[idx:idx + 1] != "{":
        raise ValueError("Expected a JSON object")
    idx = _skip_whitespace(text, idx + 1)
    members = {}
    if text[idx:idx + 1] == "}":
        return members

    while True:
        if text[idx:idx + 1] != '"':
            raise ValueError(f"Expected a key at position {idx}")
        key, idx = scanstring(text, idx + 1)
        idx = _skip_whitespace(text, idx)
        if text[idx:idx + 1] != ":":
            raise ValueError(f"Expected ':' at position {idx}")
        idx = _skip_whitespace(text, idx + 1)
        _, end = _decoder.raw_decode(text, idx)
        members[key] = text[idx:end]
        idx = _skip_whitespace(text, end)
        separator = text[idx:idx + 1]
        if separator == "}":
            return members
        if separator != ",":
            raise ValueError(f"Expected ',' or '}}' at position {idx}")
        idx = _skip_whitespace(text, idx + 1)


class WireModel(BaseModel):
    # Wire field names are camelCase (roomId, targetId, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# Client -> Server

class JoinMessage(WireModel):
    type: Literal["join"]
    room_id: str = Field(min_length=1)
    display_name: str


class SignalMessage(WireModel):
    target_id: str = Field(min_length=1)
    payload: Any

    # Source text of payload as received, forwarded instead of re-encoding
    _raw_payload: Optional[str] = PrivateAttr(default=None)

    @property
    def raw_payload(self) -> str:
        if self._raw_payload is None:
            return json.dumps(self.payload)
        return self._raw_payload


class OfferMessage(SignalMessage):
    type: Literal["negotiation-offer"]


class AnswerMessage(SignalMessage):
    type: Literal["negotiation-answer"]


class CandidateMessage(SignalMessage):
    type: Literal["network-candidate"]


ClientMessage = Annotated[
    Union[JoinMessage, OfferMessage, AnswerMessage, CandidateMessage],
    Field(discriminator="type"),
]

client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(data: str) -> ClientMessage:
    """Validate a raw text frame.

    Raises ValueError (pydantic.ValidationError included) on bad JSON or schema.
    """
    message = client_message_adapter.validate_json(data)
    if isinstance(message, SignalMessage):
        message._raw_payload = raw_object_members(data)["payload"]
    return message


# Server -> Client

class PeerInfo(WireModel):
    connection_id: str
    display_name: str


class ExistingPeersEvent(WireModel):
    type: Literal["existing-peers"] = "existing-peers"
    peers: list[PeerInfo]


class PeerJoinedEvent(WireModel):
    type: Literal["peer-joined"] = "peer-joined"
    connection_id: str
    display_name: str


class PeerLeftEvent(WireModel):
    type: Literal["peer-left"] = "peer-left"
    connection_id: str


class RelayedSignal(WireModel):
    type: Literal["negotiation-offer", "negotiation-answer", "network-candidate"]
    from_id: str
    # JSON text, spliced into the frame verbatim
    payload: str

    def to_json(self) -> str:
        envelope = self.model_dump_json(by_alias=True, exclude={"payload"})
        return f'{envelope[:-1]},"payload":{self.payload}}}'


ServerMessage = Union[ExistingPeersEvent, PeerJoinedEvent, PeerLeftEvent, RelayedSignal]
