"""
Build a method inventory from compiled modules.

Each module is opened, walked type by type and closed again before the next
one. A module that cannot be read is logged and skipped so the remaining
modules still contribute to the inventory.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, ContextManager, Iterable, List, Optional

from .assembly import AssemblyModule, TypeDefinition, open_assembly
from .errors import AssemblyLoadError
from .models import MethodInventory, MethodRecord, SourceLocation
from .safety import MethodDescriptor, SafetyClassifier
from .source_locations import NullSourceLocationProvider, SourceLocationProvider

logger = logging.getLogger(__name__)

ModuleLoader = Callable[[Path], ContextManager[AssemblyModule]]


@dataclass(frozen=True)
class ExtractionProgress:
    processed: int
    total: int
    current: str


@dataclass
class ExtractionOptions:
    include_compiler_generated: bool = False
    max_workers: int = 1
    progress: Optional[Callable[[ExtractionProgress], None]] = None


class MethodInventoryExtractor:
    def __init__(
        self,
        classifier: Optional[SafetyClassifier] = None,
        locations: Optional[SourceLocationProvider] = None,
        loader: ModuleLoader = open_assembly,
    ):
        self.classifier = classifier or SafetyClassifier()
        self.locations = locations or NullSourceLocationProvider()
        self.loader = loader

    def extract(self, module_paths: Iterable[str | Path], options: Optional[ExtractionOptions] = None) -> MethodInventory:
        """Extract every declared method of ``module_paths`` into one inventory.

        Results are appended in input order regardless of ``max_workers``.
        """
        if module_paths is None:
            raise ValueError("module_paths is required")
        opts = options or ExtractionOptions()
        paths = [Path(p) for p in module_paths]
        inventory = MethodInventory()
        total = len(paths)

        if opts.max_workers > 1 and total > 1:
            with ThreadPoolExecutor(max_workers=opts.max_workers) as pool:
                results = pool.map(lambda p: self._extract_module(p, opts), paths)
                self._merge(inventory, paths, results, opts)
        else:
            self._merge(inventory, paths, (self._extract_module(p, opts) for p in paths), opts)

        logger.info("Extracted %d methods from %d module(s)", len(inventory), total)
        return inventory

    def _merge(self, inventory, paths, results, opts: ExtractionOptions) -> None:
        for index, (path, records) in enumerate(zip(paths, results), start=1):
            if records is not None:
                inventory.extend(records)
            if opts.progress is not None:
                opts.progress(ExtractionProgress(index, len(paths), path.name))

    def _extract_module(self, path: Path, opts: ExtractionOptions) -> Optional[List[MethodRecord]]:
        """Records of one module, or None when it could not be read at all."""
        try:
            with self.loader(path) as module:
                records: List[MethodRecord] = []
                for type_def in module.types():
                    try:
                        records.extend(list(self._extract_type(module.name, path, type_def, opts)))
                    except Exception as e:
                        logger.warning("Skipping type %s in %s: %s", type_def.full_name, path.name, e)
                logger.debug("%s: %d methods", path.name, len(records))
                return records
        except AssemblyLoadError as e:
            logger.error("%s", e)
        except Exception:
            logger.exception("Failed to process module %s", path)
        return None

    def _extract_type(self, module_name: str, path: Path, type_def: TypeDefinition, opts: ExtractionOptions):
        if type_def.is_enum or type_def.is_interface:
            return
        if type_def.is_compiler_generated and not opts.include_compiler_generated:
            return
        for method in type_def.methods:
            if method.is_compiler_generated and not opts.include_compiler_generated:
                continue
            tier = self.classifier.classify(method)
            logger.debug("%s.%s -> %s", type_def.full_name, method.name, tier.value)
            yield MethodRecord(
                module_name=module_name,
                type_name=type_def.full_name,
                method_name=method.name,
                signature=method.signature,
                visibility=method.visibility,
                safety_tier=tier,
                location=self._locate(method, path),
            )

    def _locate(self, method: MethodDescriptor, path: Path) -> Optional[SourceLocation]:
        try:
            return self.locations.locate(method, path)
        except Exception as e:
            logger.debug("No source location for %s.%s: %s", method.declaring_type, method.name, e)
            return None
