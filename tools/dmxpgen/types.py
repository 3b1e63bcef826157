"""
Type system: TypeRef-to-target mapping interface, identifier casing and
FNV-1a hash for channel IDs.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Set, Tuple

from .ir import (
    KIND_ENUM, KIND_MAP, KIND_MESSAGE, KIND_REPEATED, KIND_SCALAR,
    OP_CALL, OP_PUBLISH, OP_SERVE, OP_SUBSCRIBE,
    EnumShape, IRModel, OperationDecl, TypeRef,
)

# Operation kind -> binding class suffix, shared by every target.
BINDING_SUFFIX = {
    OP_PUBLISH: "Publisher",
    OP_SUBSCRIBE: "Subscriber",
    OP_CALL: "Client",
    OP_SERVE: "Server",
}


@dataclass(frozen=True)
class TargetType:
    expr: str          # type expression in the target language
    hook: str          # runtime codec expression for values of this type
    default: str = ""  # initializer, where the target needs one
    bare: str = ""     # expression inside containers, when it differs from expr

    @property
    def element(self) -> str:
        return self.bare or self.expr


class TypeMapper:
    """
    Maps IR type references to one target language.

    Subclasses fill ``SCALARS`` (scalar name -> TargetType) and
    ``RESERVED``, and implement the composite kinds. ``map_type`` is total:
    every well-formed TypeRef of the model maps to something.

    Top-level identifiers (type names, binding classes and whatever a
    target declares per channel) are assigned once per model. When two
    of them would spell the same target identifier, the later one in
    model order gets a numeric suffix: ``OuterInner``, ``OuterInner2``.
    """

    SCALARS: Dict[str, TargetType] = {}
    RESERVED: FrozenSet[str] = frozenset()

    def __init__(self, model: IRModel, escape_suffix: str = "_"):
        self.model = model
        self.escape_suffix = escape_suffix or "_"
        self._type_names: Optional[Dict[str, str]] = None
        self._op_bases: Dict[str, str] = {}

    def map_type(self, ref: TypeRef) -> TargetType:
        if ref.kind == KIND_SCALAR:
            return self.SCALARS[ref.name]
        if ref.kind in (KIND_ENUM, KIND_MESSAGE) and not self.model.has_type(ref.name):
            raise ValueError(f"type {ref.name!r} is not part of the model")
        if ref.kind == KIND_ENUM:
            return self.enum_type(self.type_name(ref.name), self.model.enum(ref.name))
        if ref.kind == KIND_MESSAGE:
            return self.message_type(self.type_name(ref.name))
        if ref.kind == KIND_REPEATED:
            return self.repeated_type(self.map_type(ref.element))
        if ref.kind == KIND_MAP:
            return self.map_of(self.map_type(ref.key), self.map_type(ref.value))
        raise ValueError(f"unknown TypeRef kind {ref.kind!r}")

    # ── Per-target hooks ─────────────────────────────────────────────

    def symbol_name(self, symbol: Tuple[str, ...]) -> str:
        """Spelling of a type symbol before escaping and disambiguation."""
        return "_".join(symbol)

    def operation_identifiers(self, base: str) -> Tuple[str, ...]:
        """Top-level identifiers the target declares for an operation base."""
        return tuple(self.escape(base + suffix) for suffix in BINDING_SUFFIX.values())

    def enum_type(self, name: str, shape: EnumShape) -> TargetType:
        raise NotImplementedError

    def message_type(self, name: str) -> TargetType:
        raise NotImplementedError

    def repeated_type(self, element: TargetType) -> TargetType:
        raise NotImplementedError

    def map_of(self, key: TargetType, value: TargetType) -> TargetType:
        raise NotImplementedError

    # ── Identifiers ──────────────────────────────────────────────────

    def escape(self, ident: str) -> str:
        """Append the escape suffix while ``ident`` is a reserved word."""
        while ident in self.RESERVED:
            ident += self.escape_suffix
        return ident

    def type_name(self, full_name: str) -> str:
        """Target identifier for a message or enum of the model."""
        self._assign()
        return self._type_names[full_name]

    def operation_base(self, op_name: str) -> str:
        """PascalCase stem shared by every identifier of an operation."""
        self._assign()
        return self._op_bases[op_name]

    def binding_name(self, op: OperationDecl) -> str:
        return self.escape(self.operation_base(op.name) + BINDING_SUFFIX[op.kind])

    def _assign(self):
        if self._type_names is not None:
            return
        used: Set[str] = set()
        names: Dict[str, str] = {}
        for shape in self.model.enums + self.model.messages:
            base = self.symbol_name(shape.symbol)
            name = _first_free(base, lambda c: self.escape(c) in used)
            names[shape.full_name] = self.escape(name)
            used.add(names[shape.full_name])

        for op in self.model.operations:
            if op.name in self._op_bases:
                continue
            base = _first_free(
                pascal_case(op.name),
                lambda c: any(i in used for i in self.operation_identifiers(c)))
            self._op_bases[op.name] = base
            used.update(self.operation_identifiers(base))
        self._type_names = names


def _first_free(base: str, taken) -> str:
    candidate, n = base, 2
    while taken(candidate):
        candidate = f"{base}{n}"
        n += 1
    return candidate


# ── Casing ───────────────────────────────────────────────────────────

_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z0-9])|[A-Z]?[a-z0-9]+|[A-Z]+")


def words(name: str) -> Tuple[str, ...]:
    """Split ``getHTTPStatus_v2`` into ("get", "HTTP", "Status", "v2")."""
    return tuple(_WORD_RE.findall(name))


def snake_case(name: str) -> str:
    return "_".join(w.lower() for w in words(name)) or name


def pascal_case(name: str) -> str:
    return "".join(w[:1].upper() + w[1:] for w in words(name)) or name


def camel_case(name: str) -> str:
    p = pascal_case(name)
    return p[:1].lower() + p[1:]


def screaming_case(name: str) -> str:
    return snake_case(name).upper()


def fnv1a_32(s: str) -> int:
    """FNV-1a 32-bit hash. Used to derive the channel ID from the channel name."""
    h = 0x811c9dc5
    for b in s.encode("utf-8"):
        h ^= b
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h
