"""git-lfs custom transfer protocol messages.

See https://github.com/git-lfs/git-lfs/blob/main/docs/custom-transfers.md

Inbound messages (init, upload, download, terminate) are parsed from one
JSON object per line; outbound messages (progress, complete, error, and the
empty init acknowledgement) are serialized to one JSON object per line.
"""

import json
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .constants import TRANSFER_ERROR_CODE
from .errors import ProtocolError


class _Inbound(BaseModel):
    # git-lfs may add fields; unknown ones are ignored.
    model_config = ConfigDict(extra="ignore")


class InitMessage(_Inbound):
    event: Literal["init"] = "init"
    operation: str = ""                 # "upload" | "download"
    remote: str = ""
    concurrent: bool = False
    concurrenttransfers: int = 0


class UploadMessage(_Inbound):
    event: Literal["upload"] = "upload"
    oid: str = ""
    size: int = 0
    path: str = ""                      # Local file to upload


class DownloadMessage(_Inbound):
    event: Literal["download"] = "download"
    oid: str = ""
    size: int = 0


class TerminateMessage(_Inbound):
    event: Literal["terminate"] = "terminate"


class ProgressMessage(BaseModel):
    event: Literal["progress"] = "progress"
    oid: str
    bytesSoFar: int
    bytesSinceLast: int


class CompleteMessage(BaseModel):
    event: Literal["complete"] = "complete"
    oid: str
    path: str = ""                      # Local path for downloads; "" for uploads


class ErrorDetail(BaseModel):
    code: int = TRANSFER_ERROR_CODE
    message: str


class ErrorMessage(BaseModel):
    event: Literal["error"] = "error"
    oid: str
    error: ErrorDetail


class InitAck(BaseModel):
    """Empty object acknowledging init."""
    pass


InboundMessage = Union[InitMessage, UploadMessage, DownloadMessage, TerminateMessage]
OutboundMessage = Union[InitAck, ProgressMessage, CompleteMessage, ErrorMessage]

_INBOUND = {
    "init": InitMessage,
    "upload": UploadMessage,
    "download": DownloadMessage,
    "terminate": TerminateMessage,
}


def parse_message(line: Union[str, bytes]) -> InboundMessage:
    """
    Parse one line of git-lfs input.

    Raises:
        ProtocolError: If the line isn't a JSON object, names an unknown
            event, or lacks a field its event requires
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise ProtocolError(f"unmarshaling message wrapper: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"expected a JSON object, got {type(data).__name__}")

    event = data.get("event")
    model = _INBOUND.get(event) if isinstance(event, str) else None
    if model is None:
        raise ProtocolError(f"unknown message type: {event!r}")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"unmarshaling {event} message: {e}") from e


def serialize_message(msg: OutboundMessage) -> str:
    """Serialize an outbound message to one line of JSON (no newline)."""
    return json.dumps(msg.model_dump(), separators=(",", ":"))
