from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from deadtrace.errors import ConfigError
from deadtrace.models import MemberAccess, SourceLocation
from deadtrace.safety import MethodDescriptor
from deadtrace.source_locations import (
    MappingSourceLocationProvider,
    NullSourceLocationProvider,
    load_source_locations,
)


def _method(declaring_type: str, name: str) -> MethodDescriptor:
    return MethodDescriptor(name=name, declaring_type=declaring_type, access=MemberAccess.PRIVATE)


def _write(tmp_path: Path, data) -> Path:
    f = tmp_path / "symbols.json"
    f.write_text(json.dumps(data), encoding="utf-8")
    return f


def test_load_source_locations(tmp_path: Path, caplog) -> None:
    f = _write(tmp_path, {
        "App.Calc.Square": {"sourceFile": "src/Calc.cs", "declarationLine": 18, "bodyStartLine": 18, "bodyEndLine": 18},
    })
    with caplog.at_level(logging.INFO, logger="deadtrace"):
        provider = load_source_locations(f)

    assert len(provider) == 1
    assert provider.locate(_method("App.Calc", "Square"), Path("App.dll")) == SourceLocation("src/Calc.cs", 18, 18, 18)
    assert provider.locate(_method("App.Calc", "Add"), Path("App.dll")) is None
    assert "Loaded 1 source locations" in caplog.text


def test_nested_separator_and_case_are_ignored() -> None:
    loc = SourceLocation("Calc.cs", 26, 26, 26)
    provider = MappingSourceLocationProvider({"App.Calc.Nested.Deep": loc})
    assert provider.locate(_method("App.Calc+Nested", "Deep"), Path("App.dll")) == loc
    assert provider.locate(_method("app.calc.nested", "DEEP"), Path("App.dll")) == loc

    provider = MappingSourceLocationProvider({"App.Calc+Nested.Deep": loc})
    assert provider.locate(_method("App.Calc+Nested", "Deep"), Path("App.dll")) == loc


def test_null_provider_locates_nothing() -> None:
    assert NullSourceLocationProvider().locate(_method("App.Calc", "Add"), Path("App.dll")) is None


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Source locations file not found"):
        load_source_locations(tmp_path / "nope.json")


@pytest.mark.parametrize(
    "content",
    [
        ["App.Calc.Add"],
        {"App.Calc.Add": {"sourceFile": "Calc.cs", "declarationLine": 1}},
        {"App.Calc.Add": {"sourceFile": "Calc.cs", "declarationLine": "one", "bodyStartLine": 1, "bodyEndLine": 1}},
    ],
)
def test_invalid_file_is_config_error(tmp_path: Path, content) -> None:
    with pytest.raises(ConfigError, match="Invalid source locations file"):
        load_source_locations(_write(tmp_path, content))


def test_non_json_is_config_error(tmp_path: Path) -> None:
    f = tmp_path / "symbols.json"
    f.write_text("not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_source_locations(f)
