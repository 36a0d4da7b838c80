"""
gateway/codec.py — Payload Codec

Turns untyped, server-controlled event data into the canonical values in
gateway.protocol. The gateway's schema has drifted over time (flat numeric
presence fields → aliased names; text-only messages → typed envelopes with
optional embedded binary), so every tolerant field is decoded by an ordered
tuple of extraction strategies. The first strategy that yields a value wins.
To accept a new alias, append a strategy — control flow does not change.

Nothing here touches the network. materialize_image() is the only function
with a side effect (a file write) and it reports failure as a value.
"""

from __future__ import annotations

import math
import re
import tempfile
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, TypeVar, Union

from exceptions import MalformedPayloadError, MaterializationError
from gateway.protocol import EventName, InboundMessage, MessageKind, Presence
from observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")
Strategy = Callable[[Any], Optional[T]]

DEFAULT_SENDER = "Unknown"
GENERIC_MIME = "application/octet-stream"

_MIME_BY_EXTENSION: dict[str, str] = {
    "jpg":  "image/jpeg",
    "jpeg": "image/jpeg",
    "png":  "image/png",
    "gif":  "image/gif",
    "webp": "image/webp",
}

_EXTENSION_BY_MIME: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg":  "jpg",
    "image/png":  "png",
    "image/gif":  "gif",
    "image/webp": "webp",
}

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def first_success(strategies: Sequence[Strategy[T]], raw: Any, default: T) -> T:
    """Run strategies in order; return the first non-None result or default."""
    for strategy in strategies:
        value = strategy(raw)
        if value is not None:
            return value
    return default


# ─────────────────────────────────────────────────────────────────────────────
# Numbers
# ─────────────────────────────────────────────────────────────────────────────

def _as_int(value: Any, scale: int = 1) -> Optional[int]:
    """int or finite float → int (truncated toward zero). Anything else → None."""
    # bool is an int subclass; a boolean count is a schema bug, not 0/1
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value * scale
    if isinstance(value, float):
        # a finite value can still overflow to inf once scaled
        scaled = value * scale
        if math.isfinite(scaled):
            # round away float noise (e.g. 1.001 * 1000) before truncating
            return math.trunc(round(scaled, 6))
    return None


def _int_field(key: str, scale: int = 1) -> Strategy[int]:
    def extract(raw: Any) -> Optional[int]:
        if not isinstance(raw, Mapping):
            return None
        return _as_int(raw.get(key), scale)

    extract.__name__ = f"int_field_{key}"
    return extract


COUNT_STRATEGIES: tuple[Strategy[int], ...] = (
    _int_field("count"),
    _int_field("participantCount"),
)

REMAINING_STRATEGIES: tuple[Strategy[int], ...] = (
    _int_field("remainingMs"),
    _int_field("ttlSeconds", scale=1000),
)


def decode_count(raw: Any) -> int:
    return max(0, first_success(COUNT_STRATEGIES, raw, 0))


def decode_remaining(raw: Any) -> int:
    """Remaining session time in milliseconds, never negative."""
    return max(0, first_success(REMAINING_STRATEGIES, raw, 0))


def decode_presence(raw: Any) -> Presence:
    return Presence(count=decode_count(raw), remaining_ms=decode_remaining(raw))


# ─────────────────────────────────────────────────────────────────────────────
# Image bytes
# ─────────────────────────────────────────────────────────────────────────────

def _raw_bytes(raw: Any) -> Optional[bytes]:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    return None


def _byte_array(raw: Any) -> Optional[bytes]:
    if not isinstance(raw, (list, tuple)):
        return None
    for b in raw:
        if isinstance(b, bool) or not isinstance(b, int) or not 0 <= b <= 255:
            return None
    return bytes(raw)


def _buffer_descriptor(raw: Any) -> Optional[bytes]:
    # Node's Buffer.toJSON(): {"type": "Buffer", "data": [..]}
    if not isinstance(raw, Mapping) or raw.get("type") != "Buffer":
        return None
    return first_success((_byte_array, _raw_bytes), raw.get("data"), None)


IMAGE_BYTES_STRATEGIES: tuple[Strategy[bytes], ...] = (
    _raw_bytes,
    _byte_array,
    _buffer_descriptor,
)


def decode_image_bytes(raw: Any) -> Optional[bytes]:
    """Bytes from any supported encoding, or None when the shape is unknown."""
    return first_success(IMAGE_BYTES_STRATEGIES, raw, None)


# ─────────────────────────────────────────────────────────────────────────────
# MIME types and materialization
# ─────────────────────────────────────────────────────────────────────────────

def infer_mime_type(file_name: Optional[str], declared_mime: Optional[str]) -> str:
    if declared_mime and declared_mime.strip():
        return declared_mime.strip()
    suffix = Path(file_name or "").suffix.lower().lstrip(".")
    return _MIME_BY_EXTENSION.get(suffix, GENERIC_MIME)


def extension_for_mime(mime: Optional[str]) -> str:
    return _EXTENSION_BY_MIME.get((mime or "").strip().lower(), "bin")


def default_image_directory() -> Path:
    return Path(tempfile.gettempdir()) / "overlay-chat-images"


@dataclass(frozen=True)
class MaterializationFailed:
    """Returned (never raised) when received image bytes cannot be written."""
    reason: str
    path: str = ""


def _safe_stem(suggested_name: Optional[str]) -> str:
    stem = Path(suggested_name or "").stem
    stem = _UNSAFE_NAME_CHARS.sub("_", stem).strip("._")
    return stem[:40] or "image"


def _write_image(path: Path, data: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # "x": the random component makes collisions unlikely; never clobber one
        with path.open("xb") as fh:
            fh.write(data)
    except OSError as exc:
        raise MaterializationError(str(path), exc.strerror or str(exc)) from exc


def materialize_image(
    data: bytes,
    suggested_name: Optional[str],
    mime: Optional[str],
    directory: Optional[Union[str, Path]] = None,
) -> Union[Path, MaterializationFailed]:
    """Write image bytes to a uniquely named local file and return its path."""
    target_dir = Path(directory) if directory else default_image_directory()
    path = target_dir / (
        f"{_safe_stem(suggested_name)}-{uuid.uuid4().hex[:12]}.{extension_for_mime(mime)}"
    )
    try:
        _write_image(path, data)
    except MaterializationError as exc:
        log.warning("codec.image.materialize_failed", path=exc.path, reason=exc.reason)
        return MaterializationFailed(reason=exc.reason, path=exc.path)
    log.debug("codec.image.materialized", path=str(path), size=len(data))
    return path


# ─────────────────────────────────────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────────────────────────────────────

def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _str_field(key: str) -> Strategy[str]:
    def extract(raw: Any) -> Optional[str]:
        return _clean_str(raw.get(key)) if isinstance(raw, Mapping) else None

    extract.__name__ = f"str_field_{key}"
    return extract


def _sender_object(raw: Any) -> Optional[str]:
    sender = raw.get("from") if isinstance(raw, Mapping) else None
    return _clean_str(sender.get("name")) if isinstance(sender, Mapping) else None


SENDER_STRATEGIES: tuple[Strategy[str], ...] = (
    _sender_object,          # {"from": {"name": ...}}
    _str_field("from"),      # {"from": "alice"}
    _str_field("senderName"),
)

TEXT_STRATEGIES: tuple[Strategy[str], ...] = (
    _str_field("content"),
    _str_field("message"),   # pre-envelope servers
)

_IMAGE_FIELDS = ("imageUrl", "imageData")


def _message_kind(payload: Mapping[str, Any], attachment: Any) -> MessageKind:
    declared = payload.get("type")
    if declared is None:
        has_image = attachment is not None or any(payload.get(k) is not None for k in _IMAGE_FIELDS)
        return MessageKind.IMAGE if has_image else MessageKind.TEXT
    try:
        return MessageKind(str(declared).strip().lower())
    except ValueError:
        raise MalformedPayloadError(EventName.NEW_MESSAGE.value, f"unknown type {declared!r}") from None


def decode_message(
    args: Sequence[Any],
    image_dir: Optional[Union[str, Path]] = None,
) -> InboundMessage:
    """
    Decode a `newMessage` event's positional arguments.

    args[0] is the envelope; args[1], when present, is a binary attachment
    carrying the image. Raises MalformedPayloadError (or MaterializationError
    when an image without caption cannot be written) for items to drop.
    """
    event = EventName.NEW_MESSAGE.value
    payload = args[0] if args else None
    attachment = args[1] if len(args) > 1 else None
    if not isinstance(payload, Mapping):
        raise MalformedPayloadError(event, "envelope is not an object")

    sender = first_success(SENDER_STRATEGIES, payload, DEFAULT_SENDER)
    text = first_success(TEXT_STRATEGIES, payload, None)
    kind = _message_kind(payload, attachment)

    if kind is MessageKind.TEXT:
        if not text:
            raise MalformedPayloadError(event, "empty text")
        return InboundMessage(kind=kind, sender_name=sender, text_content=text)

    url = _clean_str(payload.get("imageUrl"))
    if url:
        return InboundMessage(kind=kind, sender_name=sender, text_content=text, image_ref=url)

    data = decode_image_bytes(payload.get("imageData")) or decode_image_bytes(attachment)
    if not data:
        raise MalformedPayloadError(event, "image carries no decodable bytes")

    name = _clean_str(payload.get("imageName")) or "image"
    mime = infer_mime_type(name, _clean_str(payload.get("imageType")))
    result = materialize_image(data, name, mime, image_dir)
    if isinstance(result, MaterializationFailed):
        if text:
            note = f"[image could not be saved: {result.reason}]"
            return InboundMessage(
                kind=MessageKind.TEXT,
                sender_name=sender,
                text_content=f"{text}\n{note}",
            )
        raise MaterializationError(result.path, result.reason)

    return InboundMessage(kind=kind, sender_name=sender, text_content=text, image_ref=str(result))
