"""
Canonical method keys.

Static metadata and runtime traces spell the same method differently: module
prefixes, nested-type separators, generic arity, compiler-generated state
machine and closure names. ``SignatureNormalizer.normalize`` rewrites any of
these spellings to one ``Type.Method`` key. The transform is total and
idempotent.
"""
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Mapping, Optional

DEFAULT_TYPE_ALIASES: Mapping[str, str] = MappingProxyType({
    "System.String": "string",
    "System.Int32": "int",
    "System.Int64": "long",
    "System.Boolean": "bool",
    "System.Double": "double",
    "System.Single": "float",
    "System.Decimal": "decimal",
    "System.Byte": "byte",
    "System.Char": "char",
    "System.Object": "object",
    "System.Void": "void",
})

LAMBDA_PLACEHOLDER = "LambdaClass"

_ASYNC_STATE_MACHINE = re.compile(r"[.+]?<([^<>]+)>d__\d+")
_DISPLAY_CLASS = re.compile(r"<>c__DisplayClass\d+_\d+")
_CLOSURE_CLASS = re.compile(r"<>c(?![\w])")


def _alias_pattern(aliases: Mapping[str, str]) -> Optional[re.Pattern]:
    if not aliases:
        return None
    # Longest first so System.Int32 never shadows a longer spelling sharing its prefix
    names = sorted(aliases, key=len, reverse=True)
    alternatives = "|".join(re.escape(n).replace(r"\.", r"[.+]") for n in names)
    return re.compile(rf"(?<![\w.+])(?:{alternatives})(?!\w)")


def _strip_generic_arity(text: str) -> str:
    out = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch == "`" and i + 1 < n and text[i + 1].isdigit():
            i += 1
            while i < n and text[i].isdigit():
                i += 1
            if i < n and text[i] == "[":
                depth = 0
                while i < n:
                    if text[i] == "[":
                        depth += 1
                    elif text[i] == "]":
                        depth -= 1
                        if depth == 0:
                            i += 1
                            break
                    i += 1
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class SignatureNormalizer:
    def __init__(self, type_aliases: Optional[Mapping[str, str]] = None):
        aliases = DEFAULT_TYPE_ALIASES if type_aliases is None else type_aliases
        self.type_aliases: Mapping[str, str] = MappingProxyType(dict(aliases))
        self._alias_re = _alias_pattern(self.type_aliases)
        self._alias_lookup = {k.replace("+", "."): v for k, v in self.type_aliases.items()}

    def normalize(self, raw: Optional[str]) -> str:
        if not raw:
            return ""
        # Parameters never reach the key, so only the part before "(" is rewritten.
        text = raw.partition("(")[0]
        if "!" in text:
            text = text.rpartition("!")[2]
        if self._alias_re is not None:
            text = self._alias_re.sub(lambda m: self._alias_lookup[m.group(0).replace("+", ".")], text)
        text = self._unwrap_async(text)
        text = _DISPLAY_CLASS.sub(LAMBDA_PLACEHOLDER, text)
        text = _CLOSURE_CLASS.sub(LAMBDA_PLACEHOLDER, text)
        text = _strip_generic_arity(text)
        text = text.replace("+", ".")
        return text.strip()

    @staticmethod
    def _unwrap_async(text: str) -> str:
        # Ns.Type+<Run>d__3.MoveNext -> Ns.Type.Run
        m = _ASYNC_STATE_MACHINE.search(text)
        if not m:
            return text
        prefix = text[: m.start()]
        return f"{prefix}.{m.group(1)}" if prefix else m.group(1)

    def __call__(self, raw: Optional[str]) -> str:
        return self.normalize(raw)
