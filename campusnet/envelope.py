from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from .constants import (
    F_FROM,
    F_TO,
    F_TS,
    F_TYPE,
    INBOUND_TYPES,
    T_ANNOUNCEMENT,
    T_ERROR,
    T_FILE_META,
    T_LOGIN,
    T_MESSAGE,
    T_WHO,
)
from .util import clean_text, normalize_user_id


class EnvelopeError(ValueError):
    """Inbound envelope failed validation."""


class UnknownMessageType(EnvelopeError):
    def __init__(self, tag) -> None:
        super().__init__(f"unknown message type: {tag}")
        self.tag = tag


def now_ts() -> str:
    """Server timestamp: ISO-8601 UTC with milliseconds, e.g. 2026-01-02T03:04:05.678Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class Login:
    user_id: str | None
    display_name: str | None


@dataclass(frozen=True)
class ChatMessage:
    to: str
    text: str


@dataclass(frozen=True)
class Announcement:
    text: str


@dataclass(frozen=True)
class Who:
    pass


@dataclass(frozen=True)
class FileMeta:
    file_id: str | int | float
    to: object = None
    name: object = None
    size: object = None
    mime: object = None

    @property
    def address(self) -> str | None:
        return clean_text(self.to)


@dataclass(frozen=True)
class FileChunk:
    file_id: str | int | float
    seq: object
    data_base64: str
    eof: object = False
    to: object = None

    @property
    def address(self) -> str | None:
        return clean_text(self.to)


Inbound = Union[Login, ChatMessage, Announcement, Who, FileMeta, FileChunk]


def message_type(env) -> str:
    """Return the inbound type tag, or raise UnknownMessageType."""
    if not isinstance(env, dict):
        raise EnvelopeError("envelope must be a map")
    tag = env.get(F_TYPE)
    if not isinstance(tag, str) or tag not in INBOUND_TYPES:
        raise UnknownMessageType(tag)
    return tag


def _text(env: dict, key: str) -> str | None:
    # Free text is relayed as sent; only blank values count as missing.
    value = env.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        return None
    return value


_SCALARS = (str, int, float, bool)


def _is_json_value(value) -> bool:
    # CBOR can carry bytes, tags and datetimes that a JSON peer cannot receive.
    if value is None or isinstance(value, _SCALARS):
        return True
    if isinstance(value, list):
        return all(_is_json_value(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _is_json_value(v) for k, v in value.items())
    return False


def _passthrough(env: dict, kind: str, key: str):
    value = env.get(key)
    if not _is_json_value(value):
        raise EnvelopeError(f"invalid {kind}: unsupported value for '{key}'")
    return value


def _file_id(env: dict, kind: str) -> str | int | float:
    value = env.get("fileId")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise EnvelopeError(f"invalid {kind}: missing 'fileId'")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise EnvelopeError(f"invalid {kind}: 'fileId' must be a string or number")
    return value


def parse_inbound(env) -> Inbound:
    """Validate an inbound envelope once and return its typed form.

    Raises UnknownMessageType for unrecognised tags and EnvelopeError for
    missing or mistyped fields. Login is lenient about a missing user id: the
    session layer answers that case with a negative loginAck rather than an
    error.
    """
    t = message_type(env)

    if t == T_LOGIN:
        return Login(
            user_id=normalize_user_id(env.get("userId")),
            display_name=clean_text(env.get("displayName")),
        )

    if t == T_MESSAGE:
        to = clean_text(env.get(F_TO))
        text = _text(env, "text")
        if to is None:
            raise EnvelopeError("invalid message: missing 'to'")
        if text is None:
            raise EnvelopeError("invalid message: missing 'text'")
        return ChatMessage(to=to, text=text)

    if t == T_ANNOUNCEMENT:
        text = _text(env, "text")
        if text is None:
            raise EnvelopeError("invalid announcement: missing 'text'")
        return Announcement(text=text)

    if t == T_WHO:
        return Who()

    if t == T_FILE_META:
        return FileMeta(
            file_id=_file_id(env, t),
            to=_passthrough(env, t, F_TO),
            name=_passthrough(env, t, "name"),
            size=_passthrough(env, t, "size"),
            mime=_passthrough(env, t, "mime"),
        )

    # fileChunk: relayed as sent, the receiver owns ordering and decoding.
    file_id = _file_id(env, t)
    seq = env.get("seq")
    if seq is None:
        raise EnvelopeError("invalid fileChunk: missing 'seq'")
    if not isinstance(seq, _SCALARS):
        raise EnvelopeError("invalid fileChunk: 'seq' must be a scalar")
    data = env.get("dataBase64")
    if not isinstance(data, str):
        raise EnvelopeError("invalid fileChunk: missing 'dataBase64'")
    return FileChunk(
        file_id=file_id,
        seq=seq,
        data_base64=data,
        eof=_passthrough(env, t, "eof") or False,
        to=_passthrough(env, t, F_TO),
    )


def make_envelope(msg_type: str, **fields) -> dict:
    """Build an outbound envelope. Fields whose value is None are omitted."""
    env: dict[str, object] = {F_TYPE: msg_type}
    for k, v in fields.items():
        if v is not None:
            env[k] = v
    return env


def make_relayed(msg_type: str, *, sender: str, to: str | None = None, **fields) -> dict:
    """Outbound copy of a relayed message: stamped with sender and server time."""
    env = make_envelope(msg_type, **{F_FROM: sender, F_TO: to})
    for k, v in fields.items():
        if v is not None:
            env[k] = v
    env[F_TS] = now_ts()
    return env


def make_error(text: str) -> dict:
    return make_envelope(T_ERROR, error=text)
