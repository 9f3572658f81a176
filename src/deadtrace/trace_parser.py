"""
Turn execution traces into sets of canonical method keys.

Two inputs are accepted and told apart by content, never by a caller flag:

- binary EventPipe captures (``.nettrace`` extension or the ``Nettrace`` magic),
  read through :mod:`deadtrace.nettrace`;
- UTF-8 text where lines of the form ``Method Enter: Ns.Type.Method(...)``
  mark executed methods. Other lines are ignored.

Both produce keys through the same :class:`SignatureNormalizer`.
"""
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from . import nettrace
from .errors import TraceFormatError
from .models import ExecutedMethodSet
from .normalizer import SignatureNormalizer

logger = logging.getLogger(__name__)

METHOD_ENTER_PATTERN = re.compile(r"Method\s+Enter:\s+([^\(]+(?:\([^\)]*\))?)")
# dynamicClass holds runtime-emitted stubs (reflection invoke, LCG) that never exist in metadata
DEFAULT_FRAMEWORK_NAMESPACES = ("System.", "Microsoft.", "Internal.", "dynamicClass.")
DEFAULT_TRACE_EXTENSIONS = (".nettrace", ".txt")

_SNIFF_SIZE = 8192


@dataclass(frozen=True)
class TraceFilter:
    """Namespace prefixes deciding which JIT events belong to the application."""

    framework_namespaces: Tuple[str, ...] = DEFAULT_FRAMEWORK_NAMESPACES
    application_namespaces: Tuple[str, ...] = ()

    def accepts(self, namespace: str) -> bool:
        """True when a method declared in ``namespace`` counts as application code.

        A prefix written with a trailing dot also matches the bare name, so
        ``dynamicClass.`` rejects both ``dynamicClass`` and ``dynamicClass.Stub``.
        """
        if any(_has_prefix(namespace, prefix) for prefix in self.framework_namespaces):
            return False
        if self.application_namespaces:
            return any(_has_prefix(namespace, prefix) for prefix in self.application_namespaces)
        return True


def _has_prefix(namespace: str, prefix: str) -> bool:
    return namespace.startswith(prefix) or (prefix.endswith(".") and namespace == prefix[:-1])


class TraceParser:
    def __init__(self, normalizer: Optional[SignatureNormalizer] = None, trace_filter: Optional[TraceFilter] = None):
        self.normalizer = normalizer or SignatureNormalizer()
        self.trace_filter = trace_filter or TraceFilter()

    def parse(self, trace_path: str | Path) -> ExecutedMethodSet:
        """Executed-method keys of one trace file, binary or text."""
        if trace_path is None:
            raise ValueError("trace_path is required")
        path = Path(trace_path)
        if not path.is_file():
            raise FileNotFoundError(f"Trace file not found: {path}")

        if nettrace.is_nettrace(path):
            executed = self._parse_binary(path)
            kind = "binary"
        else:
            executed = self._parse_text(path)
            kind = "text"
        logger.info("Parsed %s trace %s: %d executed methods", kind, path.name, len(executed))
        return executed

    def _parse_binary(self, path: Path) -> ExecutedMethodSet:
        """Keys of application methods JIT-compiled during an EventPipe capture."""
        executed = ExecutedMethodSet()
        skipped = 0
        for event in nettrace.iter_method_events(path):
            if not self.trace_filter.accepts(event.method_namespace):
                skipped += 1
                continue
            executed.add(self.normalizer.normalize(event.identifier))
        logger.debug("%s: %d framework events filtered", path.name, skipped)
        return executed

    def _parse_text(self, path: Path) -> ExecutedMethodSet:
        """Keys from ``Method Enter:`` lines.

        Raises:
            TraceFormatError: the file holds NUL bytes or is not UTF-8.
        """
        with open(path, "rb") as f:
            head = f.read(_SNIFF_SIZE)
        if b"\x00" in head:
            raise TraceFormatError(f"{path} is neither a nettrace capture nor a text trace")

        executed = ExecutedMethodSet()
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    m = METHOD_ENTER_PATTERN.search(line)
                    if m:
                        executed.add(self.normalizer.normalize(m.group(1)))
        except UnicodeDecodeError as e:
            raise TraceFormatError(f"{path} is not valid UTF-8 text: {e}") from e
        return executed


def collect_trace_files(paths: Iterable[str | Path], extensions: Sequence[str] = DEFAULT_TRACE_EXTENSIONS) -> List[Path]:
    """Expand directories to the trace files beneath them; explicit files are kept as given."""
    wanted = {e.lower() for e in extensions}
    found: List[Path] = []
    seen = set()
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            candidates = sorted(c for c in p.rglob("*") if c.is_file() and c.suffix.lower() in wanted)
        elif p.is_file():
            candidates = [p]
        else:
            raise FileNotFoundError(f"Trace path not found: {p}")
        for c in candidates:
            key = c.resolve()
            if key not in seen:
                seen.add(key)
                found.append(c)
    return found


def parse_traces(paths: Iterable[str | Path], parser: Optional[TraceParser] = None, max_workers: int = 1) -> ExecutedMethodSet:
    """Parse every trace and union the results. Malformed traces are logged and skipped."""
    parser = parser or TraceParser()
    files = [Path(p) for p in paths]

    def parse_one(path: Path) -> Optional[ExecutedMethodSet]:
        try:
            return parser.parse(path)
        except TraceFormatError as e:
            logger.warning("Skipping trace %s: %s", path, e)
            return None

    if max_workers > 1 and len(files) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(parse_one, files))
    else:
        results = [parse_one(p) for p in files]

    executed = ExecutedMethodSet()
    for result in results:
        if result is not None:
            executed.update(result)
    logger.info("%d unique executed methods across %d trace file(s)", len(executed), len(files))
    return executed
