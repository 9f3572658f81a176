"""
deadtrace - find .NET methods that never execute

Static inventory of declared methods + JIT events from real runs = a
confidence-tiered list of cleanup candidates:

    from deadtrace import extract_inventory, parse_traces, compare

    inventory = extract_inventory(["bin/Release/net8.0/MyApp.dll"])
    executed = parse_traces(["traces/trace-default.nettrace"])
    report = compare(inventory, executed)
    print(report.statistics())
"""


def extract_inventory(module_paths, options=None):
    """Lazy wrapper so importing the package does not pull in dnfile."""
    from .extractor import MethodInventoryExtractor

    return MethodInventoryExtractor().extract(module_paths, options)


def parse_traces(*args, **kwargs):
    from .trace_parser import parse_traces as _parse_traces

    return _parse_traces(*args, **kwargs)


def compare(inventory, executed, scenarios=None):
    from .comparison import ComparisonEngine

    return ComparisonEngine().compare(inventory, executed, scenarios)


from .errors import AssemblyLoadError, ConfigError, DeadTraceError, TraceFormatError
from .models import MethodInventory, MethodRecord, RedundancyReport, SafetyTier

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("deadtrace")
except PackageNotFoundError:
    # Running from a source checkout
    __version__ = "unknown"

__all__ = [
    "extract_inventory",
    "parse_traces",
    "compare",
    "AssemblyLoadError",
    "ConfigError",
    "DeadTraceError",
    "TraceFormatError",
    "MethodInventory",
    "MethodRecord",
    "RedundancyReport",
    "SafetyTier",
    "__version__",
]
