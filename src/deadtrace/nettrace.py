"""
Reader for EventPipe ``.nettrace`` captures (format versions 4 and 5).

The container is a FastSerialization stream::

    "Nettrace" | len "!FastSerialization.1" | object* | NullReference

where each object is a type header followed by its payload. ``Trace`` carries
fixed session information; ``MetadataBlock`` and ``EventBlock`` carry events,
``StackBlock`` and ``SPBlock`` are skipped. Events are produced lazily; nothing
beyond the current block is held in memory.
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional, Tuple

from .errors import TraceFormatError

logger = logging.getLogger(__name__)

MAGIC = b"Nettrace"
SERIALIZATION_SIGNATURE = b"!FastSerialization.1"

TAG_NULL_REFERENCE = 1
TAG_BEGIN_PRIVATE_OBJECT = 5
TAG_END_OBJECT = 6

TRACE_OBJECT_SIZE = 48
SUPPORTED_VERSIONS = (4, 5)

# Compressed event header flags
FLAG_METADATA_ID = 0x01
FLAG_CAPTURE_THREAD_AND_SEQUENCE = 0x02
FLAG_THREAD_ID = 0x04
FLAG_STACK_ID = 0x08
FLAG_ACTIVITY_ID = 0x10
FLAG_RELATED_ACTIVITY_ID = 0x20
FLAG_SORTED = 0x40
FLAG_DATA_LENGTH = 0x80

BLOCK_FLAG_COMPRESSED = 0x01

RUNTIME_PROVIDER = "Microsoft-Windows-DotNETRuntime"
EVENT_METHOD_LOAD_VERBOSE = 143
EVENT_METHOD_JITTING_STARTED = 145
METHOD_FLAG_JITTED = 0x8

_UNCOMPRESSED_HEADER = struct.Struct("<iiiqqiiq16s16si")


@dataclass(frozen=True)
class EventMetadata:
    metadata_id: int
    provider: str
    event_id: int
    event_name: str = ""
    keywords: int = 0
    version: int = 0
    level: int = 0


@dataclass(frozen=True)
class TraceEvent:
    metadata: EventMetadata
    payload: bytes
    thread_id: int = 0
    timestamp: int = 0


@dataclass(frozen=True)
class MethodJitEvent:
    method_namespace: str
    method_name: str
    method_signature: str
    source: str = "MethodJittingStarted"

    @property
    def identifier(self) -> str:
        if not self.method_namespace:
            return self.method_name
        return f"{self.method_namespace}.{self.method_name}"


@dataclass
class _HeaderState:
    metadata_id: int = 0
    sequence: int = 0
    capture_thread: int = 0
    proc: int = 0
    thread_id: int = 0
    stack_id: int = 0
    timestamp: int = 0
    payload_size: int = 0


def read_varuint(data: bytes, pos: int) -> Tuple[int, int]:
    result = shift = 0
    while True:
        if pos >= len(data):
            raise TraceFormatError("truncated variable-length integer")
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if b & 0x80 == 0:
            return result, pos
        shift += 7


def read_utf16z(data: bytes, pos: int) -> Tuple[str, int]:
    end = pos
    while end + 1 < len(data):
        if data[end] == 0 and data[end + 1] == 0:
            break
        end += 2
    else:
        raise TraceFormatError("unterminated UTF-16 string")
    return data[pos:end].decode("utf-16-le", errors="replace"), end + 2


def _align4(pos: int) -> int:
    return (pos + 3) & ~3


class _StreamReader:
    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.pos = 0

    def read(self, n: int) -> bytes:
        data = self.stream.read(n)
        if len(data) != n:
            raise TraceFormatError(f"unexpected end of trace at offset {self.pos}")
        self.pos += n
        return data

    def byte(self) -> int:
        return self.read(1)[0]

    def i32(self) -> int:
        return struct.unpack("<i", self.read(4))[0]

    def expect(self, tag: int) -> None:
        got = self.byte()
        if got != tag:
            raise TraceFormatError(f"expected tag {tag} at offset {self.pos - 1}, got {got}")

    def align(self) -> None:
        padding = _align4(self.pos) - self.pos
        if padding:
            self.read(padding)


def _read_type_header(reader: _StreamReader) -> Tuple[str, int]:
    reader.expect(TAG_BEGIN_PRIVATE_OBJECT)
    reader.expect(TAG_NULL_REFERENCE)
    version = reader.i32()
    reader.i32()  # minimum reader version
    name_len = reader.i32()
    if not 0 < name_len < 256:
        raise TraceFormatError(f"implausible type name length {name_len}")
    name = reader.read(name_len).decode("ascii", errors="replace")
    reader.expect(TAG_END_OBJECT)
    return name, version


def _read_compressed_header(data: bytes, pos: int, state: _HeaderState) -> int:
    flags = data[pos]
    pos += 1
    if flags & FLAG_METADATA_ID:
        state.metadata_id, pos = read_varuint(data, pos)
    if flags & FLAG_CAPTURE_THREAD_AND_SEQUENCE:
        delta, pos = read_varuint(data, pos)
        state.sequence += delta + 1
        state.capture_thread, pos = read_varuint(data, pos)
        state.proc, pos = read_varuint(data, pos)
    elif state.metadata_id != 0:
        state.sequence += 1
    if flags & FLAG_THREAD_ID:
        state.thread_id, pos = read_varuint(data, pos)
    if flags & FLAG_STACK_ID:
        state.stack_id, pos = read_varuint(data, pos)
    delta, pos = read_varuint(data, pos)
    state.timestamp += delta
    if flags & FLAG_ACTIVITY_ID:
        pos += 16
    if flags & FLAG_RELATED_ACTIVITY_ID:
        pos += 16
    if flags & FLAG_DATA_LENGTH:
        state.payload_size, pos = read_varuint(data, pos)
    return pos


def _iter_block(content: bytes) -> Iterator[Tuple[_HeaderState, bytes]]:
    if len(content) < 4:
        raise TraceFormatError("event block too short")
    header_size, flags = struct.unpack_from("<hh", content, 0)
    if header_size < 4 or header_size > len(content):
        raise TraceFormatError(f"invalid event block header size {header_size}")
    compressed = bool(flags & BLOCK_FLAG_COMPRESSED)
    state = _HeaderState()
    pos = header_size
    while pos < len(content):
        start = pos
        if compressed:
            pos = _read_compressed_header(content, pos, state)
        else:
            if pos + _UNCOMPRESSED_HEADER.size > len(content):
                raise TraceFormatError("truncated event header")
            (event_size, metadata_id, sequence, thread_id, _capture, _proc, stack_id,
             timestamp, _activity, _related, payload_size) = _UNCOMPRESSED_HEADER.unpack_from(content, pos)
            state = _HeaderState(
                metadata_id=metadata_id & 0x7FFFFFFF,
                sequence=sequence,
                thread_id=thread_id,
                stack_id=stack_id,
                timestamp=timestamp,
                payload_size=payload_size,
            )
            pos += _UNCOMPRESSED_HEADER.size
        end = pos + state.payload_size
        if end > len(content):
            raise TraceFormatError(f"event payload overruns its block at offset {start}")
        yield state, content[pos:end]
        pos = end if compressed else _align4(start + 4 + event_size)


def _parse_metadata(payload: bytes) -> EventMetadata:
    if len(payload) < 4:
        raise TraceFormatError("metadata event too short")
    (metadata_id,) = struct.unpack_from("<i", payload, 0)
    provider, pos = read_utf16z(payload, 4)
    if pos + 4 > len(payload):
        raise TraceFormatError("metadata event too short")
    (event_id,) = struct.unpack_from("<i", payload, pos)
    event_name, pos = read_utf16z(payload, pos + 4)
    keywords = version = level = 0
    if pos + 16 <= len(payload):
        keywords, version, level = struct.unpack_from("<qii", payload, pos)
    return EventMetadata(metadata_id, provider, event_id, event_name, keywords, version, level)


def iter_events(stream: BinaryIO) -> Iterator[TraceEvent]:
    """Yield every event of a nettrace stream with its metadata resolved."""
    reader = _StreamReader(stream)
    if reader.read(len(MAGIC)) != MAGIC:
        raise TraceFormatError("not a nettrace stream")
    sig_len = reader.i32()
    if reader.read(sig_len) != SERIALIZATION_SIGNATURE:
        raise TraceFormatError("unsupported serialization signature")

    metadata: Dict[int, EventMetadata] = {}
    while True:
        tag = reader.byte()
        if tag == TAG_NULL_REFERENCE:
            return
        if tag != TAG_BEGIN_PRIVATE_OBJECT:
            raise TraceFormatError(f"unexpected tag {tag} at offset {reader.pos - 1}")
        name, version = _read_type_header(reader)
        if name == "Trace":
            if version not in SUPPORTED_VERSIONS:
                raise TraceFormatError(f"unsupported nettrace version {version}")
            reader.read(TRACE_OBJECT_SIZE)
            reader.expect(TAG_END_OBJECT)
            continue
        if name not in ("EventBlock", "MetadataBlock", "StackBlock", "SPBlock"):
            raise TraceFormatError(f"unknown object type {name!r}")
        size = reader.i32()
        reader.align()
        content = reader.read(size)
        reader.expect(TAG_END_OBJECT)

        if name == "MetadataBlock":
            for _header, payload in _iter_block(content):
                meta = _parse_metadata(payload)
                metadata[meta.metadata_id] = meta
        elif name == "EventBlock":
            for header, payload in _iter_block(content):
                meta = metadata.get(header.metadata_id)
                if meta is None:
                    logger.debug("Event with unknown metadata id %d skipped", header.metadata_id)
                    continue
                yield TraceEvent(meta, payload, header.thread_id, header.timestamp)


def _decode_method_strings(payload: bytes, offset: int) -> Tuple[str, str, str]:
    namespace, pos = read_utf16z(payload, offset)
    name, pos = read_utf16z(payload, pos)
    signature, _ = read_utf16z(payload, pos)
    return namespace, name, signature


def decode_method_event(event: TraceEvent) -> Optional[MethodJitEvent]:
    """Decode a runtime JIT event; returns ``None`` for anything else."""
    meta = event.metadata
    if meta.provider != RUNTIME_PROVIDER:
        return None
    payload = event.payload
    if meta.event_id == EVENT_METHOD_JITTING_STARTED:
        if len(payload) < 24:
            raise TraceFormatError("MethodJittingStarted payload too short")
        return MethodJitEvent(*_decode_method_strings(payload, 24), source="MethodJittingStarted")
    if meta.event_id == EVENT_METHOD_LOAD_VERBOSE:
        if len(payload) < 36:
            raise TraceFormatError("MethodLoadVerbose payload too short")
        (method_flags,) = struct.unpack_from("<I", payload, 32)
        if not method_flags & METHOD_FLAG_JITTED:
            return None
        return MethodJitEvent(*_decode_method_strings(payload, 36), source="MethodLoadVerbose")
    return None


def iter_method_events(path: str | Path) -> Iterator[MethodJitEvent]:
    """Lazily yield JIT-compiled methods from a nettrace file; the file is closed when iteration ends."""
    with open(path, "rb") as stream:
        for event in iter_events(stream):
            method = decode_method_event(event)
            if method is not None:
                yield method


def is_nettrace(path: str | Path) -> bool:
    p = Path(path)
    if p.suffix.lower() == ".nettrace":
        return True
    with open(p, "rb") as f:
        return f.read(len(MAGIC)) == MAGIC
