from __future__ import annotations

import io
import struct
from pathlib import Path

import pytest

from deadtrace.errors import TraceFormatError
from deadtrace.nettrace import (
    RUNTIME_PROVIDER,
    decode_method_event,
    is_nettrace,
    iter_events,
    iter_method_events,
    read_utf16z,
    read_varuint,
)
from nettrace_writer import NettraceWriter, varuint


def _events(data: bytes):
    return list(iter_events(io.BytesIO(data)))


@pytest.mark.parametrize("compressed", [True, False])
def test_events_carry_resolved_metadata(compressed: bool) -> None:
    w = NettraceWriter(compressed=compressed)
    w.jit("MyApp.Program", "Main").loaded("MyApp.Program", "Helper")
    events = _events(w.to_bytes())
    assert [(e.metadata.provider, e.metadata.event_id) for e in events] == [
        (RUNTIME_PROVIDER, 145),
        (RUNTIME_PROVIDER, 143),
    ]
    assert events[0].metadata.keywords == 0x10
    assert events[0].metadata.level == 5


def test_compressed_headers_reuse_previous_values() -> None:
    w = NettraceWriter(compressed=True)
    for name in ("A", "Bb", "Ccc", "Ccd"):
        w.jit("MyApp.Service", name)
    methods = [decode_method_event(e) for e in _events(w.to_bytes())]
    assert [m.method_name for m in methods] == ["A", "Bb", "Ccc", "Ccd"]
    # timestamps accumulate from the first full header
    timestamps = [e.timestamp for e in _events(w.to_bytes())]
    assert timestamps == [100, 105, 110, 115]


def test_method_events_from_file(tmp_path: Path) -> None:
    w = NettraceWriter()
    w.jit("MyApp.Program", ".ctor").loaded("MyApp.Program", "Main").loaded("MyApp.Program", "Stub", flags=0x0)
    w.add(b"\x00" * 8, 80)  # some other runtime event
    w.add(b"\x00" * 8, 1, provider="Microsoft-DotNETCore-SampleProfiler")
    path = tmp_path / "trace.nettrace"
    w.write(path)

    methods = list(iter_method_events(path))
    assert [(m.identifier, m.source) for m in methods] == [
        ("MyApp.Program..ctor", "MethodJittingStarted"),
        ("MyApp.Program.Main", "MethodLoadVerbose"),
    ]
    assert methods[0].method_signature == "void  ()"


def test_stack_blocks_are_skipped() -> None:
    w = NettraceWriter()
    w.include_stack_block = True
    w.jit("MyApp.Program", "Main")
    assert len(_events(w.to_bytes())) == 1


def test_version_5_is_accepted_and_3_is_not() -> None:
    w = NettraceWriter(version=5)
    w.jit("MyApp.Program", "Main")
    assert len(_events(w.to_bytes())) == 1

    old = NettraceWriter(version=3)
    old.jit("MyApp.Program", "Main")
    with pytest.raises(TraceFormatError, match="version"):
        _events(old.to_bytes())


def test_malformed_streams_raise() -> None:
    with pytest.raises(TraceFormatError):
        _events(b"NotATrace")
    good = NettraceWriter().jit("MyApp.Program", "Main").to_bytes()
    with pytest.raises(TraceFormatError):
        _events(good[:-20])


def test_unknown_object_type_raises() -> None:
    data = bytearray(b"Nettrace" + struct.pack("<i", 20) + b"!FastSerialization.1")
    data += bytes([5, 5, 1]) + struct.pack("<iii", 1, 1, 7) + b"Mystery" + bytes([6])
    with pytest.raises(TraceFormatError, match="Mystery"):
        _events(bytes(data))


def test_short_method_payload_raises() -> None:
    w = NettraceWriter().add(b"\x00" * 10, 145)
    (event,) = _events(w.to_bytes())
    with pytest.raises(TraceFormatError):
        decode_method_event(event)


def test_primitive_readers() -> None:
    assert read_varuint(varuint(300), 0) == (300, 2)
    assert read_varuint(varuint(2**40), 0)[0] == 2**40
    with pytest.raises(TraceFormatError):
        read_varuint(b"\x80", 0)

    data = "Ab".encode("utf-16-le") + b"\x00\x00" + b"tail"
    assert read_utf16z(data, 0) == ("Ab", 6)
    with pytest.raises(TraceFormatError):
        read_utf16z("Ab".encode("utf-16-le"), 0)


def test_is_nettrace_by_extension_or_magic(tmp_path: Path) -> None:
    by_magic = tmp_path / "capture.bin"
    by_magic.write_bytes(NettraceWriter().to_bytes())
    by_ext = tmp_path / "empty.nettrace"
    by_ext.write_bytes(b"")
    text = tmp_path / "trace.txt"
    text.write_text("Method Enter: A.B.C()\n", encoding="utf-8")
    assert is_nettrace(by_magic)
    assert is_nettrace(by_ext)
    assert not is_nettrace(text)
