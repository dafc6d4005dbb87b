# gateway/protocol.py
from __future__ import annotations
from typing import Any, Dict, Literal, Union
import json
import time
import uuid

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from .errors import MalformedMessage


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id() -> str:
    return uuid.uuid4().hex


# ---------- Eingehend ----------
class OutgoingChat(BaseModel):
    """Chat-Nachricht des Clients. Zusatzfelder bleiben für das Echo erhalten."""
    model_config = ConfigDict(extra="allow")

    type: Literal["outgoing"]
    id: Union[str, int]
    text: str
    timestamp: Union[int, float]

    # empfangenes JSON-Objekt, unverändert (Quelle des Echos)
    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)


class Unrecognized(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


InboundFrame = Union[OutgoingChat, Unrecognized]


def parse_frame(raw: Union[str, bytes]) -> InboundFrame:
    """
    Striktes Parsen: JSON-Objekt mit `type`, sonst MalformedMessage.
    Bekannte Typen werden validiert, alles andere wird Unrecognized.
    """
    try:
        payload = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise MalformedMessage("Invalid message format") from e

    if not isinstance(payload, dict) or "type" not in payload:
        raise MalformedMessage("Invalid message format")

    if payload["type"] == "outgoing":
        try:
            frame = OutgoingChat.model_validate(payload)
        except ValidationError as e:
            raise MalformedMessage("Invalid message format") from e
        frame._raw = dict(payload)
        return frame

    return Unrecognized(type=str(payload["type"]), payload=payload)


# ---------- Ausgehend ----------
class InitFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["init"] = "init"
    uuid: str
    display_name: str = Field(alias="displayName")
    is_new: bool = Field(alias="isNew")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ChatFrame(BaseModel):
    id: Union[str, int]
    type: Literal["incoming", "outgoing"]
    text: str
    timestamp: Union[int, float]

    @classmethod
    def incoming(cls, text: str) -> "ChatFrame":
        return cls(id=new_message_id(), type="incoming", text=text, timestamp=now_ms())

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


class HeartbeatFrame(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    time: int = Field(default_factory=now_ms)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


def echo_of(frame: OutgoingChat) -> Dict[str, Any]:
    """
    Echo als Empfangsbestätigung: das empfangene Objekt, nicht das validierte
    Modell. Sonst würde z.B. ein String-Timestamp als int zurückkommen.
    """
    return dict(frame._raw) if frame._raw else frame.model_dump()
