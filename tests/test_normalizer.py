from __future__ import annotations

import pytest

from deadtrace.normalizer import DEFAULT_TYPE_ALIASES, SignatureNormalizer

CASES = [
    ("MyApp.Services.Calculator.Add", "MyApp.Services.Calculator.Add"),
    ("MyApp!MyApp.Services.Calculator.Add", "MyApp.Services.Calculator.Add"),
    ("MyApp.Services.Calculator.Add(System.Int32, System.Int32)", "MyApp.Services.Calculator.Add"),
    ("MyApp.Outer+Inner.Do", "MyApp.Outer.Inner.Do"),
    ("MyApp.Worker+<ProcessAsync>d__4.MoveNext", "MyApp.Worker.ProcessAsync"),
    ("MyApp.Worker.<ProcessAsync>d__12.MoveNext()", "MyApp.Worker.ProcessAsync"),
    ("<Main>d__0.MoveNext", "Main"),
    ("MyApp.Program+<>c__DisplayClass0_0.<Main>b__0", "MyApp.Program.LambdaClass.<Main>b__0"),
    ("MyApp.Program+<>c.<Main>b__0_1", "MyApp.Program.LambdaClass.<Main>b__0_1"),
    ("MyApp.Repository`1.Get", "MyApp.Repository.Get"),
    ("MyApp.Cache`2[System.String,System.Int32].Get", "MyApp.Cache.Get"),
    ("MyApp.Box`1[[System.Collections.Generic.List`1[System.Int32]]].Open", "MyApp.Box.Open"),
    ("System.String.Concat", "string.Concat"),
    ("System.StringComparer.Compare", "System.StringComparer.Compare"),
    ("MyApp.Service..ctor", "MyApp.Service..ctor"),
    ("MyApp.Service..cctor()", "MyApp.Service..cctor"),
    ("   MyApp.Service.Run   ", "MyApp.Service.Run"),
]


@pytest.mark.parametrize("raw,expected", CASES)
def test_normalize(raw: str, expected: str) -> None:
    assert SignatureNormalizer().normalize(raw) == expected


@pytest.mark.parametrize("raw", [c[0] for c in CASES] + ["A!B!C.D", "System+Int32.Parse", "X`1[", "Outer+<>c"])
def test_normalize_is_idempotent(raw: str) -> None:
    n = SignatureNormalizer()
    once = n.normalize(raw)
    assert n.normalize(once) == once


def test_empty_and_none_are_empty() -> None:
    n = SignatureNormalizer()
    assert n.normalize("") == ""
    assert n.normalize(None) == ""
    assert n("   ") == ""


def test_lambda_numbering_does_not_affect_key() -> None:
    n = SignatureNormalizer()
    a = n.normalize("MyApp.Program+<>c__DisplayClass3_1.Run")
    b = n.normalize("MyApp.Program+<>c__DisplayClass7_0.Run")
    assert a == b == "MyApp.Program.LambdaClass.Run"


def test_custom_aliases_replace_defaults() -> None:
    n = SignatureNormalizer({"System.Guid": "Guid"})
    assert n.normalize("System.Guid.NewGuid") == "Guid.NewGuid"
    assert n.normalize("System.String.Concat") == "System.String.Concat"


def test_empty_alias_table_is_allowed() -> None:
    assert SignatureNormalizer({}).normalize("System.Int32.Parse") == "System.Int32.Parse"


def test_default_aliases_are_read_only() -> None:
    assert DEFAULT_TYPE_ALIASES["System.Int32"] == "int"
    with pytest.raises(TypeError):
        DEFAULT_TYPE_ALIASES["System.Int32"] = "Int"  # type: ignore[index]
