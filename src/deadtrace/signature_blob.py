"""
Decoder for ECMA-335 method signature blobs (II.23.2.1 MethodDefSig).

Only what the inventory needs is produced: the return type and the parameter
types, each as a full name plus the short reflection-style name
(``String``, ``List`1``, ``Int32[]``).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import DeadTraceError

# Calling convention flags
HASTHIS = 0x20
EXPLICITTHIS = 0x40
GENERIC = 0x10

# Element types
ELEMENT_TYPE_VOID = 0x01
ELEMENT_TYPE_PTR = 0x0F
ELEMENT_TYPE_BYREF = 0x10
ELEMENT_TYPE_VALUETYPE = 0x11
ELEMENT_TYPE_CLASS = 0x12
ELEMENT_TYPE_VAR = 0x13
ELEMENT_TYPE_ARRAY = 0x14
ELEMENT_TYPE_GENERICINST = 0x15
ELEMENT_TYPE_TYPEDBYREF = 0x16
ELEMENT_TYPE_FNPTR = 0x1B
ELEMENT_TYPE_SZARRAY = 0x1D
ELEMENT_TYPE_MVAR = 0x1E
ELEMENT_TYPE_CMOD_REQD = 0x1F
ELEMENT_TYPE_CMOD_OPT = 0x20
ELEMENT_TYPE_SENTINEL = 0x41
ELEMENT_TYPE_PINNED = 0x45

PRIMITIVES = {
    0x01: "System.Void",
    0x02: "System.Boolean",
    0x03: "System.Char",
    0x04: "System.SByte",
    0x05: "System.Byte",
    0x06: "System.Int16",
    0x07: "System.UInt16",
    0x08: "System.Int32",
    0x09: "System.UInt32",
    0x0A: "System.Int64",
    0x0B: "System.UInt64",
    0x0C: "System.Single",
    0x0D: "System.Double",
    0x0E: "System.String",
    0x16: "System.TypedReference",
    0x18: "System.IntPtr",
    0x19: "System.UIntPtr",
    0x1C: "System.Object",
}

# TypeDefOrRefOrSpecEncoded tags
TAG_TYPEDEF = 0
TAG_TYPEREF = 1
TAG_TYPESPEC = 2

TypeResolver = Callable[[int, int], Optional[str]]


class SignatureError(DeadTraceError):
    """Signature blob is truncated or uses an unknown element type."""


@dataclass(frozen=True)
class SignatureType:
    full_name: str
    short_name: str
    token_tag: Optional[int] = None
    token_index: Optional[int] = None


@dataclass(frozen=True)
class MethodSignature:
    has_this: bool
    generic_arity: int
    return_type: SignatureType
    parameters: Tuple[SignatureType, ...]


def _short(full_name: str) -> str:
    return full_name.rsplit(".", 1)[-1].rsplit("+", 1)[-1]


class _BlobReader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def byte(self) -> int:
        if self.pos >= len(self.data):
            raise SignatureError("unexpected end of signature blob")
        value = self.data[self.pos]
        self.pos += 1
        return value

    def peek(self) -> int:
        if self.pos >= len(self.data):
            raise SignatureError("unexpected end of signature blob")
        return self.data[self.pos]

    def compressed(self) -> int:
        b0 = self.byte()
        if b0 & 0x80 == 0:
            return b0
        if b0 & 0xC0 == 0x80:
            return ((b0 & 0x3F) << 8) | self.byte()
        if b0 & 0xE0 == 0xC0:
            b1, b2, b3 = self.byte(), self.byte(), self.byte()
            return ((b0 & 0x1F) << 24) | (b1 << 16) | (b2 << 8) | b3
        raise SignatureError(f"invalid compressed integer lead byte 0x{b0:02x}")


def read_compressed_uint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Return ``(value, bytes_consumed)`` for a compressed unsigned integer."""
    reader = _BlobReader(data)
    reader.pos = offset
    value = reader.compressed()
    return value, reader.pos - offset


class _Decoder:
    def __init__(self, data: bytes, resolve: Optional[TypeResolver]):
        self.reader = _BlobReader(data)
        self.resolve = resolve

    def type_def_or_ref(self) -> SignatureType:
        coded = self.reader.compressed()
        tag, index = coded & 0x3, coded >> 2
        name = self.resolve(tag, index) if self.resolve else None
        if not name:
            name = f"<token:{tag}:{index}>"
        return SignatureType(name, _short(name), tag, index)

    def skip_custom_mods(self) -> None:
        while self.reader.peek() in (ELEMENT_TYPE_CMOD_REQD, ELEMENT_TYPE_CMOD_OPT):
            self.reader.byte()
            self.reader.compressed()

    def param(self) -> SignatureType:
        self.skip_custom_mods()
        if self.reader.peek() == ELEMENT_TYPE_TYPEDBYREF:
            self.reader.byte()
            return SignatureType("System.TypedReference", "TypedReference")
        if self.reader.peek() == ELEMENT_TYPE_BYREF:
            self.reader.byte()
            inner = self.type()
            return SignatureType(inner.full_name + "&", inner.short_name + "&", inner.token_tag, inner.token_index)
        return self.type()

    def type(self) -> SignatureType:
        et = self.reader.byte()
        if et in PRIMITIVES:
            name = PRIMITIVES[et]
            return SignatureType(name, _short(name))
        if et in (ELEMENT_TYPE_CLASS, ELEMENT_TYPE_VALUETYPE):
            return self.type_def_or_ref()
        if et == ELEMENT_TYPE_SZARRAY:
            self.skip_custom_mods()
            inner = self.type()
            return SignatureType(inner.full_name + "[]", inner.short_name + "[]")
        if et == ELEMENT_TYPE_ARRAY:
            inner = self.type()
            rank = self.reader.compressed()
            for _ in range(self.reader.compressed()):  # sizes
                self.reader.compressed()
            for _ in range(self.reader.compressed()):  # lower bounds
                self.reader.compressed()
            dims = "[" + "," * max(rank - 1, 0) + "]"
            return SignatureType(inner.full_name + dims, inner.short_name + dims)
        if et == ELEMENT_TYPE_PTR:
            self.skip_custom_mods()
            inner = self.type()
            return SignatureType(inner.full_name + "*", inner.short_name + "*")
        if et == ELEMENT_TYPE_BYREF:
            inner = self.type()
            return SignatureType(inner.full_name + "&", inner.short_name + "&")
        if et == ELEMENT_TYPE_GENERICINST:
            self.reader.byte()  # CLASS or VALUETYPE
            generic = self.type_def_or_ref()
            args = [self.type() for _ in range(self.reader.compressed())]
            full = f"{generic.full_name}[{','.join(a.full_name for a in args)}]"
            return SignatureType(full, generic.short_name, generic.token_tag, generic.token_index)
        if et == ELEMENT_TYPE_VAR:
            n = self.reader.compressed()
            return SignatureType(f"!{n}", f"!{n}")
        if et == ELEMENT_TYPE_MVAR:
            n = self.reader.compressed()
            return SignatureType(f"!!{n}", f"!!{n}")
        if et == ELEMENT_TYPE_FNPTR:
            self.method()
            return SignatureType("System.IntPtr", "IntPtr")
        if et == ELEMENT_TYPE_PINNED:
            return self.type()
        raise SignatureError(f"unsupported element type 0x{et:02x}")

    def method(self) -> MethodSignature:
        conv = self.reader.byte()
        arity = self.reader.compressed() if conv & GENERIC else 0
        count = self.reader.compressed()
        self.skip_custom_mods()
        if self.reader.peek() == ELEMENT_TYPE_VOID:
            self.reader.byte()
            ret = SignatureType("System.Void", "Void")
        else:
            ret = self.param()
        params: List[SignatureType] = []
        while len(params) < count:
            if self.reader.peek() == ELEMENT_TYPE_SENTINEL:
                self.reader.byte()
                continue
            params.append(self.param())
        return MethodSignature(bool(conv & HASTHIS), arity, ret, tuple(params))


def decode_method_signature(blob: bytes, resolve: Optional[TypeResolver] = None) -> MethodSignature:
    """Decode a MethodDefSig blob; ``resolve(tag, index)`` names TypeDef/TypeRef/TypeSpec tokens."""
    if not blob:
        raise SignatureError("empty signature blob")
    return _Decoder(bytes(blob), resolve).method()
