from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from deadtrace import cli
from deadtrace.inventory_store import load_inventory, save_inventory
from deadtrace.models import (
    MethodInventory,
    MethodRecord,
    SafetyTier,
    SourceLocation,
    TraceResult,
    Visibility,
)

FIXTURE = Path(__file__).parent / "data" / "FixtureApp.dll"


def _w(p: Path, rel: str, content: str) -> Path:
    f = p / rel
    f.parent.mkdir(parents=True, exist_ok=True)
    f.write_text(content, encoding="utf-8")
    return f


def _inventory() -> MethodInventory:
    def rec(name: str, tier: SafetyTier, line: int) -> MethodRecord:
        loc = SourceLocation("src/Calculator.cs", line, line + 1, line + 4)
        return MethodRecord("App", "App.Calculator", name, f"{name}()", Visibility.PRIVATE, tier, loc)

    return MethodInventory([
        rec("Add", SafetyTier.LOW, 5),
        rec("Helper", SafetyTier.HIGH, 12),
        rec("OnPaint", SafetyTier.MEDIUM, 20),
        rec("Native", SafetyTier.DO_NOT_REMOVE, 30),
    ])


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_no_subcommand_prints_help(workdir: Path, capsys) -> None:
    assert cli.main([]) == 0
    assert "usage: deadtrace" in capsys.readouterr().out


def test_analyze_writes_report(workdir: Path, capsys) -> None:
    save_inventory(_inventory(), workdir / "inventory.json")
    _w(workdir, "traces/trace-default.txt", "Method Enter: App.Calculator.Add(System.Int32)\n")

    rc = cli.main(["analyze", "-i", "inventory.json", "-t", "traces", "-o", "out/report.json"])

    assert rc == 0
    data = json.loads((workdir / "out" / "report.json").read_text(encoding="utf-8"))
    assert [e["method"] for e in data["highConfidence"]] == ["Helper"]
    assert [e["method"] for e in data["mediumConfidence"]] == ["OnPaint"]
    assert data["lowConfidence"] == []
    assert "2 unused methods" in capsys.readouterr().out


def test_analyze_min_confidence_from_flag_and_config(workdir: Path) -> None:
    save_inventory(_inventory(), workdir / "inventory.json")
    _w(workdir, "trace.txt", "Method Enter: App.Calculator.Helper()\n")

    assert cli.main(["analyze", "-t", "trace.txt", "--min-confidence", "high"]) == 0
    data = json.loads((workdir / "deadcode.json").read_text(encoding="utf-8"))
    assert data == {"highConfidence": [], "mediumConfidence": [], "lowConfidence": []}

    _w(workdir, "deadtrace.yaml", "report:\n  output: cfg.json\n  min_confidence: medium\n")
    assert cli.main(["analyze", "-t", "trace.txt"]) == 0
    data = json.loads((workdir / "cfg.json").read_text(encoding="utf-8"))
    assert [e["method"] for e in data["mediumConfidence"]] == ["OnPaint"]
    assert data["lowConfidence"] == []


def test_analyze_without_trace_files_fails(workdir: Path, capsys) -> None:
    save_inventory(_inventory(), workdir / "inventory.json")
    (workdir / "traces").mkdir()
    assert cli.main(["analyze", "-t", "traces"]) == 1
    assert "No trace files" in capsys.readouterr().out


def test_analyze_missing_inventory_fails(workdir: Path, capsys) -> None:
    _w(workdir, "trace.txt", "Method Enter: A.B.C()\n")
    assert cli.main(["analyze", "-t", "trace.txt"]) == 1
    assert "Inventory file not found" in capsys.readouterr().err


def test_extract_saves_inventory(workdir: Path, monkeypatch, capsys) -> None:
    seen = {}

    class FakeExtractor:
        def __init__(self, locations=None):
            seen["locations"] = locations

        def extract(self, paths, options=None):
            seen["paths"] = [p.name for p in paths]
            seen["generated"] = options.include_compiler_generated
            return _inventory()

    monkeypatch.setattr(cli, "MethodInventoryExtractor", FakeExtractor)
    _w(workdir, "bin/App.dll", "")
    _w(workdir, "bin/Tool.exe", "")
    _w(workdir, "bin/App.pdb", "")

    assert cli.main(["extract", "bin", "--include-generated", "-o", "inv.json"]) == 0
    assert seen == {"paths": ["App.dll", "Tool.exe"], "generated": True, "locations": None}
    assert len(load_inventory(workdir / "inv.json")) == 4
    assert "4 methods from 2 assemblies" in capsys.readouterr().out


def test_profile_requires_dotnet_trace(workdir: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "dotnet_trace_available", lambda tool: False)
    assert cli.main(["profile", "App.exe"]) == 1
    assert "dotnet-trace is not installed" in capsys.readouterr().out


def test_profile_default_scenario(workdir: Path, monkeypatch) -> None:
    captured = {}

    def fake_run_scenarios(executable, scenarios, base):
        captured.update(executable=executable, scenarios=scenarios, base=base)
        now = datetime.now(timezone.utc)
        return [TraceResult(str(base.output_dir / "trace-default.nettrace"), "default", now, now, True)]

    monkeypatch.setattr(cli, "dotnet_trace_available", lambda tool: True)
    monkeypatch.setattr(cli, "run_scenarios", fake_run_scenarios)

    rc = cli.main(["profile", "App.dll", "-o", "caps", "--duration", "20", "--args", "--mode", "fast"])

    assert rc == 0
    (scenario,) = captured["scenarios"]
    assert scenario.name == "default"
    assert scenario.arguments == ["--mode", "fast"]
    assert captured["base"].duration == 20
    assert captured["base"].output_dir == Path("caps")


def test_init_writes_config_once(workdir: Path, capsys) -> None:
    assert cli.main(["init"]) == 0
    assert (workdir / "deadtrace.yaml").is_file()
    assert cli.main(["init"]) == 1
    assert "already exists" in capsys.readouterr().err
    assert cli.main(["init", "--force"]) == 0


def test_invalid_config_is_reported(workdir: Path, capsys) -> None:
    _w(workdir, "deadtrace.yaml", "report:\n  colour: red\n")
    assert cli.main(["init", "--force"]) == 1
    assert "Invalid configuration" in capsys.readouterr().err


def test_scenario_names_from_trace_files() -> None:
    files = [Path("t/trace-default.nettrace"), Path("t/trace-smoke.txt"), Path("t/custom.nettrace"), Path("x/trace-default.txt")]
    assert cli._scenario_names(files) == ["default", "smoke", "custom"]


def _fixture_locations(workdir: Path, rel: str = "symbols.json") -> Path:
    return _w(workdir, rel, json.dumps({
        "FixtureApp.Calc.Square": {"sourceFile": "Fixtures.cs", "declarationLine": 18, "bodyStartLine": 18, "bodyEndLine": 18},
        "FixtureApp.Calc.Nested.Deep": {"sourceFile": "Fixtures.cs", "declarationLine": 26, "bodyStartLine": 26, "bodyEndLine": 26},
    }))


def test_extract_and_analyze_with_source_locations(workdir: Path, capsys) -> None:
    _fixture_locations(workdir)
    _w(workdir, "trace.txt", "Method Enter: FixtureApp.Calc.Add(System.Int32, System.Int32)\n")

    assert cli.main(["extract", str(FIXTURE), "-o", "inv.json", "--locations", "symbols.json"]) == 0
    located = {m.key: m.location for m in load_inventory(workdir / "inv.json") if m.has_source_location}
    assert located == {
        "FixtureApp.Calc.Square": SourceLocation("Fixtures.cs", 18, 18, 18),
        "FixtureApp.Calc+Nested.Deep": SourceLocation("Fixtures.cs", 26, 26, 26),
    }
    assert "2 of 16 methods have a source location" in capsys.readouterr().out

    assert cli.main(["analyze", "-i", "inv.json", "-t", "trace.txt", "-o", "rep.json"]) == 0
    data = json.loads((workdir / "rep.json").read_text(encoding="utf-8"))
    assert data["highConfidence"] == [
        {"file": "Fixtures.cs", "line": 18, "method": "Square", "dependencies": []},
        {"file": "Fixtures.cs", "line": 26, "method": "Deep", "dependencies": []},
    ]
    assert data["mediumConfidence"] == []
    assert data["lowConfidence"] == []
    out = capsys.readouterr().out
    assert "13 unused methods" in out
    assert "11 unused method(s) without a source location are counted but not listed" in out


def test_analyze_warns_when_nothing_is_located(workdir: Path, capsys, caplog) -> None:
    _w(workdir, "trace.txt", "Method Enter: FixtureApp.Calc.Add(System.Int32, System.Int32)\n")
    assert cli.main(["extract", str(FIXTURE), "-o", "inv.json"]) == 0
    assert "0 of 16 methods have a source location" in capsys.readouterr().out

    assert cli.main(["analyze", "-i", "inv.json", "-t", "trace.txt", "-o", "rep.json"]) == 0
    out = capsys.readouterr().out
    assert "None of the 13 unused methods has a source location" in out
    assert "--locations" in out
    assert "None of the 13 unused methods" in caplog.text


def test_locations_from_config_resolve_against_config_file(workdir: Path) -> None:
    _fixture_locations(workdir, "cfg/symbols.json")
    _w(workdir, "cfg/deadtrace.yaml", "extraction:\n  locations: symbols.json\n")

    assert cli.main(["--config", "cfg/deadtrace.yaml", "extract", str(FIXTURE), "-o", "inv.json"]) == 0
    located = [m.key for m in load_inventory(workdir / "inv.json") if m.has_source_location]
    assert located == ["FixtureApp.Calc.Square", "FixtureApp.Calc+Nested.Deep"]


def test_missing_locations_file_fails(workdir: Path, capsys) -> None:
    assert cli.main(["extract", str(FIXTURE), "--locations", "nope.json"]) == 1
    assert "Source locations file not found" in capsys.readouterr().err
