"""
Read type and method declarations from a .NET assembly.

Metadata tables are parsed by ``dnfile``; this module turns its rows into
``TypeDefinition``/``MethodDescriptor`` values that the extractor and classifier
work with, so nothing downstream touches dnfile directly.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

import dnfile
import pefile

from .errors import AssemblyLoadError
from .models import MemberAccess
from .safety import COMPILER_GENERATED_ATTRIBUTE, EVENT_ARGS_TYPE, MethodDescriptor, ParameterDescriptor
from .signature_blob import TAG_TYPEDEF, TAG_TYPEREF, SignatureError, SignatureType, decode_method_signature

logger = logging.getLogger(__name__)

ENUM_BASE = "System.Enum"


@dataclass(frozen=True)
class TypeDefinition:
    full_name: str
    is_interface: bool = False
    is_enum: bool = False
    attributes: Tuple[str, ...] = ()
    methods: Tuple[MethodDescriptor, ...] = field(default=())

    @property
    def is_compiler_generated(self) -> bool:
        simple = self.full_name.rsplit(".", 1)[-1]
        return COMPILER_GENERATED_ATTRIBUTE in self.attributes or ("<" in simple and ">" in simple)


@dataclass
class AssemblyModule:
    """One opened module; ``types()`` enumerates its TypeDef table lazily."""

    path: Path
    name: str
    _view: Optional["_MetadataView"] = None

    def types(self) -> Iterator[TypeDefinition]:
        if self._view is None:
            return iter(())
        return self._view.iter_types()


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    inner = getattr(value, "value", value)
    if isinstance(inner, (bytes, bytearray)):
        return bytes(inner).decode("utf-8", errors="replace")
    return str(inner)


def _blob(value) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    inner = getattr(value, "value", b"")
    return bytes(inner or b"")


def _member_access(flags) -> MemberAccess:
    if flags.mdPublic:
        return MemberAccess.PUBLIC
    if flags.mdPrivate:
        return MemberAccess.PRIVATE
    if flags.mdFamily:
        return MemberAccess.FAMILY
    if flags.mdAssem:
        return MemberAccess.ASSEMBLY
    if flags.mdFamORAssem:
        return MemberAccess.FAMILY_OR_ASSEMBLY
    if flags.mdFamANDAssem:
        return MemberAccess.FAMILY_AND_ASSEMBLY
    return MemberAccess.COMPILER_CONTROLLED


class _MetadataView:
    def __init__(self, pe: dnfile.dnPE):
        self.tables = pe.net.mdtables
        self.typedefs = self._rows("TypeDef")
        self.typerefs = self._rows("TypeRef")
        self.nesting: Dict[int, int] = {
            n.NestedClass.row_index: n.EnclosingClass.row_index for n in self._rows("NestedClass")
        }
        self.method_owner: Dict[int, int] = {}
        for rid, typedef in enumerate(self.typedefs, start=1):
            for ref in typedef.MethodList or []:
                self.method_owner[ref.row_index] = rid
        self._names: Dict[int, str] = {}
        self.attributes = self._index_custom_attributes()

    def _rows(self, table_name: str) -> List:
        table = getattr(self.tables, table_name, None)
        if table is None:
            return []
        return list(table.rows)

    # --- names ---
    def typedef_name(self, rid: int, _seen: Optional[Set[int]] = None) -> str:
        if rid in self._names:
            return self._names[rid]
        if not 0 < rid <= len(self.typedefs):
            return f"<typedef:{rid}>"
        row = self.typedefs[rid - 1]
        name = _text(row.TypeName)
        seen = _seen or set()
        enclosing = self.nesting.get(rid)
        if enclosing and enclosing not in seen:
            seen.add(rid)
            full = f"{self.typedef_name(enclosing, seen)}+{name}"
        else:
            namespace = _text(row.TypeNamespace)
            full = f"{namespace}.{name}" if namespace else name
        self._names[rid] = full
        return full

    def typeref_name(self, rid: int) -> str:
        if not 0 < rid <= len(self.typerefs):
            return f"<typeref:{rid}>"
        row = self.typerefs[rid - 1]
        name = _text(row.TypeName)
        scope = getattr(row.ResolutionScope, "row", None) if row.ResolutionScope is not None else None
        if isinstance(scope, dnfile.mdtable.TypeRefRow):
            return f"{self.typeref_name(row.ResolutionScope.row_index)}+{name}"
        namespace = _text(row.TypeNamespace)
        return f"{namespace}.{name}" if namespace else name

    def resolve_token(self, tag: int, index: int) -> Optional[str]:
        if tag == TAG_TYPEDEF:
            return self.typedef_name(index)
        if tag == TAG_TYPEREF:
            return self.typeref_name(index)
        return None

    def _coded_name(self, coded) -> Optional[str]:
        row = getattr(coded, "row", None)
        if isinstance(row, dnfile.mdtable.TypeDefRow):
            return self.typedef_name(coded.row_index)
        if isinstance(row, dnfile.mdtable.TypeRefRow):
            return self.typeref_name(coded.row_index)
        return None

    def base_name(self, rid: int) -> Optional[str]:
        extends = self.typedefs[rid - 1].Extends
        return self._coded_name(extends) if extends is not None else None

    def _index_custom_attributes(self) -> Dict[Tuple[str, int], List[str]]:
        index: Dict[Tuple[str, int], List[str]] = {}
        for ca in self._rows("CustomAttribute"):
            parent = ca.Parent
            parent_row = getattr(parent, "row", None)
            if isinstance(parent_row, dnfile.mdtable.MethodDefRow):
                key = ("MethodDef", parent.row_index)
            elif isinstance(parent_row, dnfile.mdtable.TypeDefRow):
                key = ("TypeDef", parent.row_index)
            else:
                continue
            name = self._attribute_type_name(ca.Type)
            if name:
                index.setdefault(key, []).append(name)
        return index

    def _attribute_type_name(self, ctor) -> Optional[str]:
        row = getattr(ctor, "row", None)
        if isinstance(row, dnfile.mdtable.MemberRefRow):
            return self._coded_name(row.Class)
        if isinstance(row, dnfile.mdtable.MethodDefRow):
            owner = self.method_owner.get(ctor.row_index)
            return self.typedef_name(owner) if owner else None
        return None

    # --- inheritance ---
    def _typedef_chain_is_event_args(self, rid: int) -> bool:
        seen: Set[int] = set()
        while rid and rid not in seen:
            seen.add(rid)
            name = self.typedef_name(rid)
            if name == EVENT_ARGS_TYPE or name.endswith("EventArgs"):
                return True
            extends = self.typedefs[rid - 1].Extends
            row = getattr(extends, "row", None) if extends is not None else None
            if isinstance(row, dnfile.mdtable.TypeDefRow):
                rid = extends.row_index
                continue
            base = self._coded_name(extends) if extends is not None else None
            return bool(base) and (base == EVENT_ARGS_TYPE or base.endswith("EventArgs"))
        return False

    def is_event_args(self, sig_type: SignatureType) -> bool:
        if sig_type.token_tag == TAG_TYPEDEF and sig_type.token_index:
            return self._typedef_chain_is_event_args(sig_type.token_index)
        return sig_type.full_name == EVENT_ARGS_TYPE or sig_type.full_name.endswith("EventArgs")

    # --- declarations ---
    def iter_types(self) -> Iterator[TypeDefinition]:
        """Yield every TypeDef in table order; a row that fails to read is logged and skipped."""
        for rid, typedef in enumerate(self.typedefs, start=1):
            try:
                definition = self._type_definition(rid, typedef)
            except Exception as e:
                logger.warning("Skipping type #%d (%s): %s", rid, _text(typedef.TypeName), e)
                continue
            yield definition

    def _type_definition(self, rid: int, typedef) -> TypeDefinition:
        """Build the TypeDefinition for TypeDef row ``rid`` with every method it declares."""
        full_name = self.typedef_name(rid)
        type_attributes = tuple(self.attributes.get(("TypeDef", rid), ()))
        serializable = bool(typedef.Flags.tdSerializable)
        methods = []
        for ref in typedef.MethodList or []:
            row = ref.row
            if row is None:
                continue
            methods.append(self._method_descriptor(full_name, ref.row_index, row, type_attributes, serializable))
        return TypeDefinition(
            full_name=full_name,
            is_interface=bool(typedef.Flags.tdInterface),
            is_enum=self.base_name(rid) == ENUM_BASE,
            attributes=type_attributes,
            methods=tuple(methods),
        )

    def _method_descriptor(self, type_name, rid, row, type_attributes, serializable) -> MethodDescriptor:
        """
        Describe one MethodDef row for the classifier.

        An undecodable signature is logged and leaves the parameters empty; the
        method is still reported, it just cannot look like an event handler.
        """
        name = _text(row.Name)
        flags = row.Flags
        try:
            signature = decode_method_signature(_blob(row.Signature), self.resolve_token)
            parameters = tuple(
                ParameterDescriptor(p.full_name, p.short_name, self.is_event_args(p))
                for p in signature.parameters
            )
        except SignatureError as e:
            logger.warning("Cannot decode signature of %s.%s: %s", type_name, name, e)
            parameters = ()
        return MethodDescriptor(
            name=name,
            declaring_type=type_name,
            access=_member_access(flags),
            is_static=bool(flags.mdStatic),
            is_virtual=bool(flags.mdVirtual),
            is_abstract=bool(flags.mdAbstract),
            is_special_name=bool(flags.mdSpecialName),
            is_pinvoke=bool(flags.mdPinvokeImpl),
            attributes=tuple(self.attributes.get(("MethodDef", rid), ())),
            type_attributes=type_attributes,
            type_is_serializable=serializable,
            parameters=parameters,
            token=0x06000000 | rid,
        )


def _assembly_name(view: _MetadataView, path: Path) -> str:
    """Assembly manifest name, falling back to the file stem for bare modules."""
    rows = view._rows("Assembly")
    if rows:
        name = _text(rows[0].Name)
        if name:
            return name
    return path.stem


@contextmanager
def open_assembly(path: str | Path) -> Iterator[AssemblyModule]:
    """Open a module for the duration of the ``with`` block; always closed on exit."""
    p = Path(path)
    if not p.is_file():
        raise AssemblyLoadError(str(p), "file not found")
    try:
        pe = dnfile.dnPE(str(p))
    except (pefile.PEFormatError, OSError) as e:
        raise AssemblyLoadError(str(p), str(e)) from e
    try:
        if pe.net is None or pe.net.mdtables is None:
            raise AssemblyLoadError(str(p), "no .NET metadata")
        view = _MetadataView(pe)
        yield AssemblyModule(path=p, name=_assembly_name(view, p), _view=view)
    finally:
        pe.close()
