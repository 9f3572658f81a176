"""
Pydantic schema for ``deadtrace.yaml`` / ``[tool.deadtrace]``.

Every section forbids unknown keys so a misspelled option fails loudly instead
of silently falling back to its default.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .models import SafetyTier

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ExtractionModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    include_compiler_generated: bool = False
    max_workers: int = Field(default=1, ge=1)
    locations: Optional[str] = None


class TraceModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    framework_namespaces: Optional[List[str]] = None
    application_namespaces: List[str] = Field(default_factory=list)
    extensions: Optional[List[str]] = None
    max_workers: int = Field(default=1, ge=1)


class NormalizerModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type_aliases: Dict[str, str] = Field(default_factory=dict)


class ReportModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    output: Optional[str] = None
    min_confidence: Optional[str] = None

    @field_validator("min_confidence")
    @classmethod
    def _known_tier(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            SafetyTier.from_label(v)
        return v


class ProfilingModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    output_dir: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    providers: Optional[str] = None
    buffer_size: Optional[int] = Field(default=None, gt=0)
    tool: Optional[str] = None


class LoggingModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    level: Optional[str] = None
    format: Optional[str] = None

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.upper() not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}")
        return v


class RootModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    extraction: Optional[ExtractionModel] = None
    trace: Optional[TraceModel] = None
    normalizer: Optional[NormalizerModel] = None
    report: Optional[ReportModel] = None
    profiling: Optional[ProfilingModel] = None
    logging: Optional[LoggingModel] = None


def validate_config_data(data: dict) -> RootModel:
    """Validate raw configuration data.

    Raises:
        ConfigError: unknown keys, wrong types or out-of-range values.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"configuration must be a mapping, got {type(data).__name__}")
    try:
        return RootModel.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration:\n{e}") from e
