from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from deadtrace.models import (
    ExecutedMethodSet,
    MemberAccess,
    MethodInventory,
    MethodRecord,
    SafetyTier,
    TraceResult,
    Visibility,
)


def test_executed_set_is_case_insensitive_and_keeps_first_spelling() -> None:
    s = ExecutedMethodSet(["App.Type.Run", "app.type.RUN", "App.Type.Stop", ""])
    assert len(s) == 2
    assert "APP.TYPE.run" in s
    assert 42 not in s
    assert sorted(s) == ["App.Type.Run", "App.Type.Stop"]


def test_executed_set_operators_return_executed_sets() -> None:
    a = ExecutedMethodSet(["A.B.C", "A.B.D"])
    b = ExecutedMethodSet(["a.b.c"])
    assert isinstance(a | b, ExecutedMethodSet)
    assert len(a | b) == 2
    assert list(a - b) == ["A.B.D"]
    assert b <= a


@pytest.mark.parametrize(
    "label,tier",
    [
        ("high", SafetyTier.HIGH),
        ("Medium", SafetyTier.MEDIUM),
        (" LOW ", SafetyTier.LOW),
        ("HighConfidence", SafetyTier.HIGH),
        ("DoNotRemove", SafetyTier.DO_NOT_REMOVE),
    ],
)
def test_tier_from_label(label: str, tier: SafetyTier) -> None:
    assert SafetyTier.from_label(label) == tier


def test_tier_rank_order_and_unknown_label() -> None:
    ranks = [t.rank for t in (SafetyTier.DO_NOT_REMOVE, SafetyTier.LOW, SafetyTier.MEDIUM, SafetyTier.HIGH)]
    assert ranks == sorted(ranks)
    with pytest.raises(ValueError):
        SafetyTier.from_label("certain")


def test_access_maps_to_visibility() -> None:
    assert MemberAccess.PUBLIC.visibility == Visibility.PUBLIC
    assert MemberAccess.FAMILY.visibility == Visibility.PROTECTED
    assert MemberAccess.FAMILY_OR_ASSEMBLY.visibility == Visibility.PROTECTED_INTERNAL
    assert MemberAccess.ASSEMBLY.visibility == Visibility.INTERNAL
    assert MemberAccess.COMPILER_CONTROLLED.visibility == Visibility.PRIVATE


def test_inventory_grouping_keeps_first_seen_order() -> None:
    def rec(module: str, name: str, tier=SafetyTier.HIGH) -> MethodRecord:
        return MethodRecord(module, f"{module}.T", name, f"{name}()", Visibility.PRIVATE, tier)

    inv = MethodInventory([rec("B", "x"), rec("A", "y", SafetyTier.LOW), rec("B", "z")])
    assert list(inv.by_module()) == ["B", "A"]
    assert [m.method_name for m in inv.by_module()["B"]] == ["x", "z"]
    assert [m.method_name for m in inv.by_tier(SafetyTier.LOW)] == ["y"]
    assert inv.methods[0].key == "B.T.x"
    with pytest.raises(ValueError):
        inv.add(None)  # type: ignore[arg-type]


def test_trace_result_duration_and_file(tmp_path: Path) -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    trace = tmp_path / "trace-default.nettrace"
    result = TraceResult(str(trace), "default", start, start + timedelta(seconds=42), True)
    assert result.duration == timedelta(seconds=42)
    assert not result.trace_file_exists
    trace.write_bytes(b"Nettrace")
    assert result.trace_file_exists
