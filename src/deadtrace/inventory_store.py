"""
Persisted method inventory (``inventory.json``).

Written by ``deadtrace extract`` and read back by ``deadtrace analyze`` so the
static pass and the trace comparison can run at different times.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError
from .models import MethodInventory, MethodRecord, SafetyTier, SourceLocation, Visibility

logger = logging.getLogger(__name__)


class LocationModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sourceFile: str
    declarationLine: int
    bodyStartLine: int
    bodyEndLine: int


class MethodModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assemblyName: str
    typeName: str
    methodName: str
    signature: str = ""
    visibility: Visibility
    safetyLevel: SafetyTier
    location: Optional[LocationModel] = None

    @classmethod
    def from_record(cls, record: MethodRecord) -> "MethodModel":
        loc = record.location
        return cls(
            assemblyName=record.module_name,
            typeName=record.type_name,
            methodName=record.method_name,
            signature=record.signature,
            visibility=record.visibility,
            safetyLevel=record.safety_tier,
            location=LocationModel(
                sourceFile=loc.source_file,
                declarationLine=loc.declaration_line,
                bodyStartLine=loc.body_start_line,
                bodyEndLine=loc.body_end_line,
            ) if loc else None,
        )

    def to_record(self) -> MethodRecord:
        loc = self.location
        return MethodRecord(
            module_name=self.assemblyName,
            type_name=self.typeName,
            method_name=self.methodName,
            signature=self.signature,
            visibility=self.visibility,
            safety_tier=self.safetyLevel,
            location=SourceLocation(loc.sourceFile, loc.declarationLine, loc.bodyStartLine, loc.bodyEndLine)
            if loc else None,
        )


class InventoryDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    methods: List[MethodModel] = Field(default_factory=list)


def save_inventory(inventory: MethodInventory, path: str | Path) -> Path:
    """Write ``inventory`` as camelCase JSON, creating the parent directory. Returns the path written."""
    if inventory is None:
        raise ValueError("inventory is required")
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    doc = InventoryDocument(methods=[MethodModel.from_record(m) for m in inventory])
    out.write_text(doc.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Saved %d methods to %s", len(inventory), out)
    return out


def load_inventory(path: str | Path) -> MethodInventory:
    """
    Read an inventory written by ``save_inventory``.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ConfigError: the document fails validation.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Inventory file not found: {p}")
    try:
        doc = InventoryDocument.model_validate_json(p.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise ConfigError(f"Invalid inventory file {p}: {e}") from e
    inventory = MethodInventory(m.to_record() for m in doc.methods)
    logger.info("Loaded %d methods from %s", len(inventory), p)
    return inventory
