"""
Trace capture through ``dotnet-trace collect``.

The runner only launches the target under the tracer and reports where the
``.nettrace`` file went; interpreting it is the trace parser's job.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError
from .models import TraceResult

logger = logging.getLogger(__name__)

DEFAULT_PROVIDERS = "Microsoft-Windows-DotNETRuntime:0x4C14FCCBD:5"
DEFAULT_BUFFER_SIZE = 512
DEFAULT_TIMEOUT = 600
TIMEOUT_GRACE = 30
TRACE_TOOL = "dotnet-trace"


@dataclass
class ProfilingOptions:
    output_dir: Path = Path("traces")
    scenario_name: str = "default"
    duration: Optional[int] = None
    expect_failure: bool = False
    providers: str = DEFAULT_PROVIDERS
    buffer_size: int = DEFAULT_BUFFER_SIZE
    tool: str = TRACE_TOOL

    @property
    def timeout(self) -> int:
        return self.duration + TIMEOUT_GRACE if self.duration else DEFAULT_TIMEOUT

    @property
    def trace_path(self) -> Path:
        return Path(self.output_dir) / f"trace-{self.scenario_name}.nettrace"


@dataclass
class ProfilingScenario:
    name: str
    arguments: List[str] = field(default_factory=list)
    duration: Optional[int] = None
    expect_failure: bool = False
    description: str = ""


class _ScenarioModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    arguments: List[str] = Field(default_factory=list)
    duration: Optional[int] = Field(default=None, gt=0)
    expectFailure: bool = False
    description: Optional[str] = None


class _ScenariosDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scenarios: List[_ScenarioModel] = Field(default_factory=list)


def load_scenarios(path: str | Path) -> List[ProfilingScenario]:
    """Read ``{"scenarios": [{name, arguments, duration, expectFailure, description}]}``."""
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Scenarios file not found: {p}")
    try:
        doc = _ScenariosDocument.model_validate_json(p.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise ConfigError(f"Invalid scenarios file {p}: {e}") from e
    return [
        ProfilingScenario(s.name, list(s.arguments), s.duration, s.expectFailure, s.description or "")
        for s in doc.scenarios
    ]


def dotnet_trace_available(tool: str = TRACE_TOOL) -> bool:
    """True when ``tool`` is on PATH."""
    return shutil.which(tool) is not None


def build_trace_command(executable: str | Path, arguments: Sequence[str], options: ProfilingOptions) -> List[str]:
    """``dotnet-trace collect`` argv; framework-dependent .dll targets run through ``dotnet``."""
    cmd = [
        options.tool, "collect",
        "--providers", options.providers,
        "--buffersize", str(options.buffer_size),
        "--output", str(options.trace_path),
        "--",
    ]
    exe = str(executable)
    if exe.lower().endswith(".dll"):
        cmd.append("dotnet")
    cmd.append(exe)
    cmd.extend(arguments)
    return cmd


class DotnetTraceRunner:
    def __init__(self, run: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self._run = run

    def run(self, executable: str | Path, arguments: Sequence[str], options: ProfilingOptions) -> TraceResult:
        """
        Launch ``executable`` under the tracer and wait for it.

        Never raises for a failed run: timeouts, a missing tool and unexpected
        exit codes all come back as an unsuccessful TraceResult.
        """
        if executable is None or options is None:
            raise ValueError("executable and options are required")
        logger.info("Running profiling on %s with scenario %s", executable, options.scenario_name)
        Path(options.output_dir).mkdir(parents=True, exist_ok=True)
        trace_path = options.trace_path
        cmd = build_trace_command(executable, list(arguments or []), options)
        logger.debug("Starting %s", " ".join(cmd))

        start = datetime.now(timezone.utc)
        try:
            proc = self._run(cmd, capture_output=True, text=True, timeout=options.timeout)
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %ss", options.tool, options.timeout)
            return TraceResult(str(trace_path), options.scenario_name, start, datetime.now(timezone.utc),
                               False, f"timed out after {options.timeout}s")
        except FileNotFoundError as e:
            logger.error("%s is not installed: %s", options.tool, e)
            return TraceResult(str(trace_path), options.scenario_name, start, datetime.now(timezone.utc),
                               False, f"{options.tool} not found")
        end = datetime.now(timezone.utc)

        ok = proc.returncode == 0 or (options.expect_failure and proc.returncode != 0)
        if not ok:
            logger.error("%s failed with exit code %d: %s", options.tool, proc.returncode, (proc.stderr or "").strip())
        if trace_path.is_file():
            logger.info("Trace file created: %s (%d bytes)", trace_path, trace_path.stat().st_size)
        else:
            logger.warning("Trace file was not created: %s", trace_path)
        return TraceResult(
            trace_file_path=str(trace_path),
            scenario_name=options.scenario_name,
            start_time=start,
            end_time=end,
            is_successful=ok,
            error_message=None if ok else (proc.stderr or "").strip() or f"exit code {proc.returncode}",
        )


def run_scenarios(
    executable: str | Path,
    scenarios: Sequence[ProfilingScenario],
    base_options: ProfilingOptions,
    runner: Optional[DotnetTraceRunner] = None,
) -> List[TraceResult]:
    """Run each scenario in turn; a scenario's own duration wins over the default."""
    runner = runner or DotnetTraceRunner()
    results = []
    for scenario in scenarios:
        options = ProfilingOptions(
            output_dir=base_options.output_dir,
            scenario_name=scenario.name,
            duration=scenario.duration or base_options.duration,
            expect_failure=scenario.expect_failure,
            providers=base_options.providers,
            buffer_size=base_options.buffer_size,
            tool=base_options.tool,
        )
        results.append(runner.run(executable, scenario.arguments, options))
    return results
