#!/usr/bin/env python3
"""
deadtrace command line

Subcommands:
  - extract:  build a method inventory from .NET assemblies
  - profile:  capture execution traces with dotnet-trace
  - analyze:  compare an inventory against traces and write the report
  - full:     extract + profile + analyze in one go
  - init:     write a starter deadtrace.yaml
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .comparison import ComparisonEngine
from .config import DeadTraceConfig, load_config, save_example_config
from .errors import DeadTraceError
from .extractor import ExtractionOptions, MethodInventoryExtractor
from .inventory_store import load_inventory, save_inventory
from .logging_setup import setup_logging
from .models import MethodInventory, RedundancyReport, SafetyTier
from .normalizer import SignatureNormalizer
from .report import ReportGenerator
from .runner import ProfilingOptions, ProfilingScenario, dotnet_trace_available, load_scenarios, run_scenarios
from .source_locations import load_source_locations
from .trace_parser import TraceFilter, TraceParser, collect_trace_files, parse_traces

logger = logging.getLogger(__name__)

ASSEMBLY_SUFFIXES = (".dll", ".exe")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deadtrace", description="Find .NET methods that never run")
    parser.add_argument("--config", default=None, help="Path to deadtrace.yaml or pyproject.toml")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR (overrides config)")
    sub = parser.add_subparsers(dest="cmd")

    p_extract = sub.add_parser("extract", help="Extract the method inventory from assemblies")
    p_extract.add_argument("assemblies", nargs="+", help="Assembly files or directories holding them")
    p_extract.add_argument("-o", "--output", default="inventory.json", help="Inventory JSON to write")
    p_extract.add_argument("--include-generated", action="store_true", help="Keep compiler-generated members")
    p_extract.add_argument("--locations", default=None, help="JSON map of Type.Method -> source location")

    p_profile = sub.add_parser("profile", help="Run the application under dotnet-trace")
    p_profile.add_argument("executable", help="Application .exe or .dll")
    p_profile.add_argument("--scenarios", default=None, help="Scenarios JSON file")
    p_profile.add_argument("--args", nargs=argparse.REMAINDER, default=[], help="Arguments for the default scenario")
    p_profile.add_argument("-o", "--output", default=None, help="Directory for .nettrace files")
    p_profile.add_argument("--duration", type=int, default=None, help="Expected run time in seconds")

    p_analyze = sub.add_parser("analyze", help="Compare inventory with traces")
    p_analyze.add_argument("-i", "--inventory", default="inventory.json", help="Inventory JSON from 'extract'")
    p_analyze.add_argument("-t", "--traces", nargs="+", required=True, help="Trace files or directories")
    p_analyze.add_argument("-o", "--output", default=None, help="Report JSON to write")
    p_analyze.add_argument("--min-confidence", default=None, choices=["high", "medium", "low"])

    p_full = sub.add_parser("full", help="Extract, profile and analyze")
    p_full.add_argument("--assemblies", nargs="+", required=True, help="Assembly files or directories")
    p_full.add_argument("--executable", required=True, help="Application .exe or .dll")
    p_full.add_argument("--scenarios", default=None, help="Scenarios JSON file")
    p_full.add_argument("--locations", default=None, help="JSON map of Type.Method -> source location")
    p_full.add_argument("-o", "--output", default="analysis", help="Directory for all outputs")
    p_full.add_argument("--min-confidence", default=None, choices=["high", "medium", "low"])

    p_init = sub.add_parser("init", help="Write a starter deadtrace.yaml")
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    return parser


def _expand_assemblies(paths: List[str]) -> List[Path]:
    """Directories contribute their .dll/.exe files (not recursive); files pass through."""
    found: List[Path] = []
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            found.extend(sorted(c for c in p.iterdir() if c.is_file() and c.suffix.lower() in ASSEMBLY_SUFFIXES))
        else:
            found.append(p)
    return found


def _scenario_names(trace_files: List[Path]) -> List[str]:
    """Scenario labels from trace file names: ``trace-smoke.nettrace`` -> ``smoke``."""
    names = []
    for f in trace_files:
        stem = f.stem
        name = stem[len("trace-"):] if stem.startswith("trace-") else stem
        if name not in names:
            names.append(name)
    return names


def _normalizer(config: DeadTraceConfig) -> SignatureNormalizer:
    return SignatureNormalizer(config.normalizer.merged_aliases())


def _print_tiers(counts: dict) -> None:
    for tier in (SafetyTier.HIGH, SafetyTier.MEDIUM, SafetyTier.LOW, SafetyTier.DO_NOT_REMOVE):
        print(f"   {tier.value:<17} {counts.get(tier, 0)}")


def _locations_path(config: DeadTraceConfig, override: Optional[str]) -> Optional[Path]:
    """``--locations`` wins; a path from the config file is relative to that file."""
    if override:
        return Path(override)
    configured = config.extraction.locations
    if not configured:
        return None
    path = Path(configured)
    if not path.is_absolute() and config.source is not None:
        path = Path(config.source).parent / path
    return path


def run_extract(
    config: DeadTraceConfig,
    assemblies: List[str],
    output: Path,
    include_generated: bool = False,
    locations: Optional[str] = None,
) -> MethodInventory:
    """Extract the inventory of ``assemblies`` (files or directories) and save it to ``output``."""
    paths = _expand_assemblies(assemblies)
    options = ExtractionOptions(
        include_compiler_generated=include_generated or config.extraction.include_compiler_generated,
        max_workers=config.extraction.max_workers,
        progress=lambda p: logger.info("Module %d/%d: %s", p.processed, p.total, p.current),
    )
    locations_path = _locations_path(config, locations)
    provider = load_source_locations(locations_path) if locations_path else None
    inventory = MethodInventoryExtractor(locations=provider).extract(paths, options)
    save_inventory(inventory, output)
    print(f"✅ {len(inventory)} methods from {len(paths)} assembl{'y' if len(paths) == 1 else 'ies'} -> {output}")
    _print_tiers({tier: len(inventory.by_tier(tier)) for tier in SafetyTier})
    located = sum(1 for m in inventory if m.has_source_location)
    print(f"📍 {located} of {len(inventory)} methods have a source location")
    return inventory


def run_profile(
    config: DeadTraceConfig,
    executable: str,
    output_dir: Path,
    scenarios_file: Optional[str] = None,
    arguments: Optional[List[str]] = None,
    duration: Optional[int] = None,
) -> int:
    """Capture one trace per scenario. Returns 1 when dotnet-trace is missing or a run left no trace."""
    prof = config.profiling
    if not dotnet_trace_available(prof.tool):
        print(f"❌ {prof.tool} is not installed (dotnet tool install --global dotnet-trace)")
        return 1
    if scenarios_file:
        scenarios = load_scenarios(scenarios_file)
    else:
        scenarios = [ProfilingScenario("default", list(arguments or []), duration, description="Default profiling scenario")]
    base = ProfilingOptions(
        output_dir=output_dir,
        duration=duration or prof.duration,
        providers=prof.providers,
        buffer_size=prof.buffer_size,
        tool=prof.tool,
    )
    results = run_scenarios(executable, scenarios, base)
    for r in results:
        mark = "✅" if r.is_successful else "⚠️"
        trace = Path(r.trace_file_path).name if r.trace_file_exists else "N/A"
        print(f"{mark} {r.scenario_name}: {r.duration.total_seconds():.1f}s, trace {trace}")
        if r.error_message:
            print(f"   {r.error_message}")
    return 0 if all(r.is_successful or r.trace_file_exists for r in results) else 1


def run_analyze(
    config: DeadTraceConfig,
    inventory_path: Path,
    trace_paths: List[str],
    output: Path,
    min_confidence: Optional[str] = None,
) -> Optional[RedundancyReport]:
    """
    Compare a saved inventory with traces and write the JSON report.

    Returns:
        The full (unfiltered) report, or None when no trace file was found.
    """
    inventory = load_inventory(inventory_path)
    print(f"📦 {len(inventory)} methods in inventory")
    files = collect_trace_files(trace_paths, config.trace.extensions)
    if not files:
        print("❌ No trace files found")
        return None
    normalizer = _normalizer(config)
    parser = TraceParser(
        normalizer,
        TraceFilter(tuple(config.trace.framework_namespaces), tuple(config.trace.application_namespaces)),
    )
    executed = parse_traces(files, parser, config.trace.max_workers)
    print(f"🔎 {len(executed)} unique executed methods in {len(files)} trace file(s)")

    report = ComparisonEngine(normalizer).compare(inventory, executed, _scenario_names(files))
    min_tier = SafetyTier.from_label(min_confidence) if min_confidence else config.report.min_tier
    ReportGenerator(min_tier).generate(report, output)

    selected = report.filtered(min_tier)
    stats = selected.statistics()
    print(f"🧹 {stats.total} unused methods -> {output}")
    _print_tiers({
        SafetyTier.HIGH: stats.high_confidence,
        SafetyTier.MEDIUM: stats.medium_confidence,
        SafetyTier.LOW: stats.low_confidence,
    })
    unlocated = sum(1 for u in selected.unused_methods if u.file_path is None)
    if unlocated and unlocated == stats.total:
        logger.warning("None of the %d unused methods has a source location", unlocated)
        print(f"⚠️  None of the {unlocated} unused methods has a source location, so {output} lists none of them.")
        print("   Re-run extract with --locations <symbols.json> to place them in the report.")
    elif unlocated:
        print(f"   {unlocated} unused method(s) without a source location are counted but not listed")
    return report


def _dispatch(args: argparse.Namespace, config: DeadTraceConfig) -> int:
    if args.cmd == "extract":
        run_extract(config, args.assemblies, Path(args.output), args.include_generated, args.locations)
        return 0

    if args.cmd == "profile":
        out = Path(args.output or config.profiling.output_dir)
        return run_profile(config, args.executable, out, args.scenarios, args.args, args.duration)

    if args.cmd == "analyze":
        out = Path(args.output or config.report.output)
        report = run_analyze(config, Path(args.inventory), args.traces, out, args.min_confidence)
        return 0 if report is not None else 1

    if args.cmd == "full":
        root = Path(args.output)
        inventory_path = root / "inventory.json"
        traces_dir = root / "traces"
        run_extract(config, args.assemblies, inventory_path, locations=args.locations)
        rc = run_profile(config, args.executable, traces_dir, args.scenarios)
        if rc != 0:
            print("⚠️  Profiling reported failures; analyzing whatever traces exist")
        report = run_analyze(config, inventory_path, [str(traces_dir)], root / "report.json", args.min_confidence)
        return 0 if report is not None else 1

    if args.cmd == "init":
        out = save_example_config(force=args.force)
        print(f"✅ Wrote {out}")
        return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 0

    try:
        config = load_config(Path(args.config) if args.config else None)
        setup_logging(args.log_level or config.logging.level, config.logging.format)
        return _dispatch(args, config)
    except (DeadTraceError, OSError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
