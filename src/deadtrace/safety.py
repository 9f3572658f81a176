"""
Rule-based removal-safety classification.

Rules are evaluated in a fixed order and the first match wins. Several rules
overlap (a method can be virtual and protected at the same time), so the order
below is part of the contract:

 1. special-name member that is not an operator     -> Medium
 2. must-keep marker on the method or its type      -> DoNotRemove
 3. security-critical marker                        -> DoNotRemove
 4. (object sender, XxxEventArgs e) handler shape   -> Medium
 5. virtual or abstract                             -> Medium
 6. protected / protected internal                  -> Medium
 7. public                                          -> Low
 8. test-framework marker                           -> Low
 9. private                                         -> High
10. anything else                                   -> Medium
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Tuple

from .models import MemberAccess, SafetyTier, Visibility

OBJECT_TYPE = "System.Object"
EVENT_ARGS_TYPE = "System.EventArgs"

MUST_KEEP_METHOD_ATTRIBUTES = (
    "System.Runtime.InteropServices.ComVisibleAttribute",
    "System.CodeDom.Compiler.GeneratedCodeAttribute",
)
SERIALIZATION_NAMESPACE = "System.Runtime.Serialization"
SECURITY_NAMESPACE = "System.Security"
SECURITY_MARKERS = ("SecurityCritical", "SecuritySafeCritical")
TEST_MARKERS = ("Test", "Fact", "Theory")
COMPILER_GENERATED_ATTRIBUTE = "System.Runtime.CompilerServices.CompilerGeneratedAttribute"


@dataclass(frozen=True)
class ParameterDescriptor:
    type_name: str  # full name, e.g. System.String
    short_name: str  # reflection-style name, e.g. String
    is_event_args: bool = False


@dataclass(frozen=True)
class MethodDescriptor:
    """Static metadata of one declared method, as read from a module."""

    name: str
    declaring_type: str
    access: MemberAccess
    is_static: bool = False
    is_virtual: bool = False
    is_abstract: bool = False
    is_special_name: bool = False
    is_pinvoke: bool = False
    attributes: Tuple[str, ...] = ()
    type_attributes: Tuple[str, ...] = ()
    type_is_serializable: bool = False
    parameters: Tuple[ParameterDescriptor, ...] = ()
    token: int = 0

    @property
    def visibility(self) -> Visibility:
        return self.access.visibility

    @property
    def is_constructor(self) -> bool:
        return self.name in (".ctor", ".cctor")

    @property
    def is_compiler_generated(self) -> bool:
        return (
            COMPILER_GENERATED_ATTRIBUTE in self.attributes
            or ("<" in self.name and ">" in self.name)
            or "__BackingField" in self.name
        )

    @property
    def signature(self) -> str:
        params = ", ".join(p.short_name for p in self.parameters)
        return f"{self.name}({params})"


def _short_name(full_name: str) -> str:
    return full_name.rsplit(".", 1)[-1]


def _is_special(method: MethodDescriptor) -> bool:
    return method.is_special_name and not method.name.startswith("op_")


def _has_must_keep_marker(method: MethodDescriptor) -> bool:
    if method.is_pinvoke or any(a in MUST_KEEP_METHOD_ATTRIBUTES for a in method.attributes):
        return True
    if method.type_is_serializable:
        return True
    return any(SERIALIZATION_NAMESPACE in a for a in method.type_attributes)


def _is_security_critical(method: MethodDescriptor) -> bool:
    return any(
        SECURITY_NAMESPACE in a and any(marker in a for marker in SECURITY_MARKERS)
        for a in method.attributes
    )


def _is_event_handler(method: MethodDescriptor) -> bool:
    if len(method.parameters) != 2:
        return False
    sender, args = method.parameters
    return sender.type_name == OBJECT_TYPE and args.is_event_args


def _is_virtual_or_abstract(method: MethodDescriptor) -> bool:
    return method.is_virtual or method.is_abstract


def _is_protected(method: MethodDescriptor) -> bool:
    return method.access in (
        MemberAccess.FAMILY,
        MemberAccess.FAMILY_OR_ASSEMBLY,
        MemberAccess.FAMILY_AND_ASSEMBLY,
    )


def _is_public(method: MethodDescriptor) -> bool:
    return method.access == MemberAccess.PUBLIC


def _is_test_method(method: MethodDescriptor) -> bool:
    return any(
        marker in _short_name(a) for a in method.attributes for marker in TEST_MARKERS
    )


def _is_private(method: MethodDescriptor) -> bool:
    return method.access == MemberAccess.PRIVATE


Rule = Tuple[str, Callable[[MethodDescriptor], bool], SafetyTier]

DEFAULT_RULES: Tuple[Rule, ...] = (
    ("special-name", _is_special, SafetyTier.MEDIUM),
    ("must-keep", _has_must_keep_marker, SafetyTier.DO_NOT_REMOVE),
    ("security-critical", _is_security_critical, SafetyTier.DO_NOT_REMOVE),
    ("event-handler", _is_event_handler, SafetyTier.MEDIUM),
    ("virtual", _is_virtual_or_abstract, SafetyTier.MEDIUM),
    ("protected", _is_protected, SafetyTier.MEDIUM),
    ("public", _is_public, SafetyTier.LOW),
    ("test", _is_test_method, SafetyTier.LOW),
    ("private", _is_private, SafetyTier.HIGH),
)
FALLBACK_TIER = SafetyTier.MEDIUM


@dataclass(frozen=True)
class SafetyClassifier:
    rules: Tuple[Rule, ...] = field(default=DEFAULT_RULES)
    fallback: SafetyTier = FALLBACK_TIER

    def classify(self, method: MethodDescriptor) -> SafetyTier:
        if method is None:
            raise ValueError("method is required")
        for _name, predicate, tier in self.rules:
            if predicate(method):
                return tier
        return self.fallback

    def explain(self, method: MethodDescriptor) -> str:
        """Name of the first rule that matches, or ``fallback``."""
        if method is None:
            raise ValueError("method is required")
        for name, predicate, _tier in self.rules:
            if predicate(method):
                return name
        return "fallback"

    def rule_names(self) -> List[str]:
        return [name for name, _p, _t in self.rules]
