"""
Configuration loader - YAML files or ``[tool.deadtrace]`` in pyproject.toml.
"""
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .config_schema import validate_config_data
from .errors import ConfigError
from .models import SafetyTier
from .normalizer import DEFAULT_TYPE_ALIASES
from .runner import DEFAULT_BUFFER_SIZE, DEFAULT_PROVIDERS, TRACE_TOOL
from .trace_parser import DEFAULT_FRAMEWORK_NAMESPACES, DEFAULT_TRACE_EXTENSIONS

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = (
    "deadtrace.yaml",
    "deadtrace.yml",
    ".deadtrace.yaml",
    ".deadtrace.yml",
)

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class ExtractionConfig:
    include_compiler_generated: bool = False
    max_workers: int = 1
    # JSON map of Type.Method -> source location, e.g. exported from PDBs
    locations: Optional[str] = None


@dataclass
class TraceConfig:
    framework_namespaces: List[str] = field(default_factory=lambda: list(DEFAULT_FRAMEWORK_NAMESPACES))
    # empty = every namespace not denied above
    application_namespaces: List[str] = field(default_factory=list)
    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_TRACE_EXTENSIONS))
    max_workers: int = 1


@dataclass
class NormalizerConfig:
    type_aliases: Dict[str, str] = field(default_factory=dict)

    def merged_aliases(self) -> Dict[str, str]:
        aliases = dict(DEFAULT_TYPE_ALIASES)
        aliases.update(self.type_aliases)
        return aliases


@dataclass
class ReportConfig:
    output: str = "deadcode.json"
    min_confidence: str = "low"

    @property
    def min_tier(self) -> SafetyTier:
        return SafetyTier.from_label(self.min_confidence)


@dataclass
class ProfilingConfig:
    output_dir: str = "traces"
    duration: Optional[int] = None
    providers: str = DEFAULT_PROVIDERS
    buffer_size: int = DEFAULT_BUFFER_SIZE
    tool: str = TRACE_TOOL


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT


@dataclass
class DeadTraceConfig:
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    trace: TraceConfig = field(default_factory=TraceConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    profiling: ProfilingConfig = field(default_factory=ProfilingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: Optional[Path] = None


def load_config(config_path: Optional[Path] = None, search_dir: Optional[Path] = None) -> DeadTraceConfig:
    """
    Load configuration.

    Args:
        config_path: explicit file; when None the file is looked up with ``find_config_file``

    Returns:
        DeadTraceConfig: defaults overlaid with whatever the file sets
    """
    if config_path:
        return _load_config_file(Path(config_path))

    found = find_config_file(search_dir)
    if found:
        logger.info("Using configuration file %s", found)
        return _load_config_file(found)

    logger.debug("No configuration file found, using defaults")
    return DeadTraceConfig()


def find_config_file(search_dir: Optional[Path] = None) -> Optional[Path]:
    """Return the first YAML candidate, else pyproject.toml when it has [tool.deadtrace]."""
    base = Path(search_dir) if search_dir else Path.cwd()
    for name in CONFIG_FILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    pyproject = base / "pyproject.toml"
    if pyproject.is_file() and _has_deadtrace_table(pyproject):
        return pyproject
    return None


def _load_config_file(config_path: Path) -> DeadTraceConfig:
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(config_path)
    elif suffix == ".toml":
        data = _read_toml(config_path)
    else:
        raise ConfigError(f"Unsupported configuration format: {suffix}")

    config = _parse_config_data(data or {})
    config.source = config_path
    return config


def _read_yaml(config_path: Path) -> Any:
    try:
        with config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e


def _read_toml(config_path: Path) -> Dict[str, Any]:
    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e
    # pyproject.toml keeps the settings under [tool.deadtrace]
    if "tool" in data and "deadtrace" in data["tool"]:
        return data["tool"]["deadtrace"]
    return data


def _has_deadtrace_table(pyproject_path: Path) -> bool:
    try:
        with pyproject_path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError:
        logger.warning("Ignoring unparsable %s", pyproject_path)
        return False
    return "deadtrace" in data.get("tool", {})


def _parse_config_data(data: Dict[str, Any]) -> DeadTraceConfig:
    validated = validate_config_data(data)
    config = DeadTraceConfig()
    for section in ("extraction", "trace", "normalizer", "report", "profiling", "logging"):
        model = getattr(validated, section)
        if model is None:
            continue
        target = getattr(config, section)
        for key, value in model.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(target, key, value)
    return config


def create_example_config() -> str:
    """Contents for a starter deadtrace.yaml."""
    return """# deadtrace configuration
extraction:
  include_compiler_generated: false
  max_workers: 4
  # Type.Method -> {sourceFile, declarationLine, bodyStartLine, bodyEndLine};
  # without it the report file has no entries to point at
  # locations: "symbols.json"

trace:
  # JIT events from these namespace prefixes are ignored
  framework_namespaces: ["System.", "Microsoft.", "Internal.", "dynamicClass."]
  # when non-empty only these prefixes are kept
  application_namespaces: []
  extensions: [".nettrace", ".txt"]

report:
  output: "deadcode.json"
  min_confidence: low   # high | medium | low

profiling:
  output_dir: "traces"
  buffer_size: 512

logging:
  level: INFO
"""


def save_example_config(output_path: Optional[Path] = None, force: bool = False) -> Path:
    """Write the starter config; refuses to overwrite unless ``force`` is set."""
    out = Path(output_path) if output_path else Path(CONFIG_FILE_NAMES[0])
    if out.exists() and not force:
        raise ConfigError(f"{out} already exists (use --force to overwrite)")
    out.write_text(create_example_config(), encoding="utf-8")
    return out
