"""
IR builder: turns validated option records plus the descriptor graph into
a self-contained ``IRModel``.

Type resolution is a worklist over fully-qualified names with per-message
memoization, so recursive message graphs terminate and every type gets
exactly one shape. A channel whose type closure cannot be resolved is
reported and dropped; everything else is still built.
"""

from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Sequence, Set, Tuple

from google.protobuf import descriptor_pb2

from .diagnostics import DiagnosticSink
from .graph import DescriptorGraph, MessageEntry, normalize
from .ir import (
    CALL, PUBLISH,
    OP_CALL, OP_PUBLISH, OP_SERVE, OP_SUBSCRIBE,
    ChannelDecl, EnumShape, EnumValueShape, FieldShape, IRModel,
    MessageShape, OperationDecl, TypeRef,
)
from .log import get_logger
from .options import AnyOption, CallOption

logger = get_logger(__name__)

_F = descriptor_pb2.FieldDescriptorProto

# descriptor field type -> scalar name
SCALAR_TYPES = {
    _F.TYPE_DOUBLE:   "double",
    _F.TYPE_FLOAT:    "float",
    _F.TYPE_INT64:    "int64",
    _F.TYPE_UINT64:   "uint64",
    _F.TYPE_INT32:    "int32",
    _F.TYPE_FIXED64:  "fixed64",
    _F.TYPE_FIXED32:  "fixed32",
    _F.TYPE_BOOL:     "bool",
    _F.TYPE_STRING:   "string",
    _F.TYPE_BYTES:    "bytes",
    _F.TYPE_UINT32:   "uint32",
    _F.TYPE_SFIXED32: "sfixed32",
    _F.TYPE_SFIXED64: "sfixed64",
    _F.TYPE_SINT32:   "sint32",
    _F.TYPE_SINT64:   "sint64",
}


class UnresolvedType(Exception):
    """A type reference that does not resolve inside the descriptor set."""


@dataclass
class _Resolved:
    """Memo entry for one message: its fields and the types they reference."""
    fields: Tuple[FieldShape, ...]
    deps: Tuple[str, ...]


class IRBuilder:
    """
    Builds one ``IRModel`` from option records.

    Usage::

        model = IRBuilder(graph, sink).build(records)
    """

    def __init__(self, graph: DescriptorGraph, sink: DiagnosticSink):
        self.graph = graph
        self.sink = sink
        self._memo: Dict[str, _Resolved] = {}
        self._broken: Dict[str, str] = {}
        # Committed types in discovery order.
        self._message_order: List[str] = []
        self._enum_order: List[str] = []
        self._committed: Set[str] = set()

    def build(self, records: Sequence[AnyOption]) -> IRModel:
        channels: List[ChannelDecl] = []
        operations: List[OperationDecl] = []
        used_names: Set[str] = set()

        for rec in records:
            roots = [rec.message_type]
            if isinstance(rec, CallOption):
                roots.append(rec.response_type)

            try:
                for root in roots:
                    if self.graph.find_message(root) is None:
                        raise UnresolvedType(
                            f"{root!r} is not a message type in the request")
                closure = self._closure(roots)
            except UnresolvedType as e:
                self.sink.error(
                    f"channel {rec.name!r} ({rec.declared_by}): unresolved "
                    f"type reference: {e}", rec.location)
                continue

            self._commit(closure)

            message = TypeRef.message(normalize(rec.message_type))
            response = None
            if isinstance(rec, CallOption):
                response = TypeRef.message(normalize(rec.response_type))

            channels.append(ChannelDecl(
                name=rec.name, direction=rec.direction, message=message,
                response=response, qos=rec.qos, location=rec.location,
                file=rec.file, origin=rec.origin, declared_by=rec.declared_by))

            base = _unique(rec.op_name, used_names)
            if rec.direction == CALL:
                operations.append(OperationDecl(base, OP_CALL, rec.name, message, response))
                operations.append(OperationDecl(base, OP_SERVE, rec.name, message, response))
            elif rec.direction == PUBLISH:
                operations.append(OperationDecl(base, OP_PUBLISH, rec.name, message))
            else:
                operations.append(OperationDecl(base, OP_SUBSCRIBE, rec.name, message))

        messages, enums = self._shapes()
        packages: List[str] = []
        for file in self.graph.generate:
            pkg = self.graph.package_of(file)
            if pkg not in packages:
                packages.append(pkg)

        logger.info("built IR: %d channel(s), %d operation(s), %d message(s), %d enum(s)",
                    len(channels), len(operations), len(messages), len(enums))
        return IRModel(
            channels=tuple(channels),
            operations=tuple(operations),
            messages=messages,
            enums=enums,
            packages=tuple(packages),
            files=self.graph.generate,
        )

    # ── Type closure ─────────────────────────────────────────────────

    def _closure(self, roots: Sequence[str]) -> List[str]:
        """Every message / enum reachable from ``roots``, breadth first."""
        order: List[str] = []
        seen: Set[str] = set()
        queue = deque(normalize(r) for r in roots)
        while queue:
            name = queue.popleft()
            if name in seen:
                continue
            seen.add(name)
            if name in self.graph.enums:
                order.append(name)
                continue
            resolved = self._resolve(name)
            order.append(name)
            queue.extend(resolved.deps)
        return order

    def _resolve(self, name: str) -> _Resolved:
        if name in self._memo:
            return self._memo[name]
        if name in self._broken:
            raise UnresolvedType(self._broken[name])

        entry = self.graph.messages.get(name)
        if entry is None:
            problem = f"{name!r} is not defined in the request"
            self._broken[name] = problem
            raise UnresolvedType(problem)

        fields: List[FieldShape] = []
        deps: List[str] = []
        proto2 = self.graph.files[entry.file].syntax in ("", "proto2")
        try:
            for f in entry.proto.field:
                ref = self._field_type(entry, f, deps)
                optional = bool(f.proto3_optional) or (
                    proto2 and f.label == _F.LABEL_OPTIONAL
                    and f.type not in (_F.TYPE_MESSAGE, _F.TYPE_GROUP))
                oneof = ""
                if f.HasField("oneof_index") and not f.proto3_optional:
                    oneof = entry.proto.oneof_decl[f.oneof_index].name
                fields.append(FieldShape(name=f.name, type=ref, number=f.number,
                                         optional=optional, oneof=oneof))
        except UnresolvedType as e:
            self._broken[name] = str(e)
            raise

        resolved = _Resolved(fields=tuple(fields), deps=tuple(deps))
        self._memo[name] = resolved
        return resolved

    def _field_type(self, owner: MessageEntry, f, deps: List[str]) -> TypeRef:
        if f.type in (_F.TYPE_MESSAGE, _F.TYPE_GROUP):
            target = self.graph.find_message(f.type_name)
            if target is None:
                raise UnresolvedType(
                    f"field {owner.full_name}.{f.name} references unknown "
                    f"type {normalize(f.type_name)!r}")
            if target.proto.options.map_entry and f.label == _F.LABEL_REPEATED:
                return self._map_type(owner, target, deps)
            ref = TypeRef.message(target.full_name)
            deps.append(target.full_name)
        elif f.type == _F.TYPE_ENUM:
            target = self.graph.find_enum(f.type_name)
            if target is None:
                raise UnresolvedType(
                    f"field {owner.full_name}.{f.name} references unknown "
                    f"enum {normalize(f.type_name)!r}")
            ref = TypeRef.enum(target.full_name)
            deps.append(target.full_name)
        else:
            ref = TypeRef.scalar(SCALAR_TYPES[f.type])

        if f.label == _F.LABEL_REPEATED:
            return TypeRef.repeated(ref)
        return ref

    def _map_type(self, owner: MessageEntry, entry: MessageEntry,
                  deps: List[str]) -> TypeRef:
        by_number = {f.number: f for f in entry.proto.field}
        if 1 not in by_number or 2 not in by_number:
            raise UnresolvedType(f"map entry {entry.full_name!r} is malformed")
        key = self._field_type(owner, by_number[1], deps)
        value = self._field_type(owner, by_number[2], deps)
        return TypeRef.map(key, value)

    def _commit(self, closure: Sequence[str]):
        for name in closure:
            if name in self._committed:
                continue
            self._committed.add(name)
            if name in self.graph.enums:
                self._enum_order.append(name)
            else:
                self._message_order.append(name)

    # ── Shapes ───────────────────────────────────────────────────────

    def _shapes(self) -> Tuple[Tuple[MessageShape, ...], Tuple[EnumShape, ...]]:
        symbols = self._symbols()
        messages = tuple(
            MessageShape(full_name=name, symbol=symbols[name],
                         file=self.graph.messages[name].file,
                         fields=self._memo[name].fields)
            for name in self._message_order)
        enums = []
        for name in self._enum_order:
            entry = self.graph.enums[name]
            values = tuple(EnumValueShape(v.name, v.number) for v in entry.proto.value)
            enums.append(EnumShape(full_name=name, symbol=symbols[name],
                                   file=entry.file, values=values))
        return messages, tuple(enums)

    def _symbols(self) -> Dict[str, Tuple[str, ...]]:
        """
        Nested path per committed type; types whose paths collide are all
        prefixed with their package components.
        """
        entries = {}
        for name in self._message_order:
            entries[name] = self.graph.messages[name]
        for name in self._enum_order:
            entries[name] = self.graph.enums[name]

        counts: Dict[Tuple[str, ...], int] = {}
        for entry in entries.values():
            counts[entry.nested] = counts.get(entry.nested, 0) + 1

        symbols = {}
        for name, entry in entries.items():
            if counts[entry.nested] > 1:
                pkg = tuple(p for p in entry.package.split(".") if p)
                symbols[name] = pkg + entry.nested
            else:
                symbols[name] = entry.nested
        return symbols


def _unique(base: str, used: Set[str]) -> str:
    name, n = base, 2
    while name in used:
        name = f"{base}{n}"
        n += 1
    used.add(name)
    return name


def build_ir(graph: DescriptorGraph, records: Sequence[AnyOption],
             sink: DiagnosticSink) -> IRModel:
    return IRBuilder(graph, sink).build(records)
