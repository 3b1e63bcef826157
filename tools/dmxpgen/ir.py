"""
Intermediate representation: the language-neutral model every emitter reads.

All nodes are frozen dataclasses holding tuples, so a built ``IRModel`` can
be shared across emitter threads without locking.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .diagnostics import Location


# TypeRef kinds.
KIND_SCALAR   = "scalar"
KIND_ENUM     = "enum"
KIND_MESSAGE  = "message"
KIND_REPEATED = "repeated"
KIND_MAP      = "map"

# Channel directions.
PUBLISH   = "publish"
SUBSCRIBE = "subscribe"
CALL      = "call"
DIRECTIONS = (PUBLISH, SUBSCRIBE, CALL)

# Operation kinds. ``serve`` is the handler side of a call channel.
OP_PUBLISH   = "publish"
OP_SUBSCRIBE = "subscribe"
OP_CALL      = "call"
OP_SERVE     = "serve"

# Scalar names, protobuf spelling.
SCALARS = (
    "double", "float",
    "int32", "int64", "uint32", "uint64",
    "sint32", "sint64", "fixed32", "fixed64", "sfixed32", "sfixed64",
    "bool", "string", "bytes",
)


@dataclass(frozen=True)
class TypeRef:
    kind: str
    name: str = ""                       # scalar name or fully-qualified type
    element: Optional["TypeRef"] = None  # repeated element
    key: Optional["TypeRef"] = None      # map key
    value: Optional["TypeRef"] = None    # map value

    @staticmethod
    def scalar(name: str) -> "TypeRef":
        return TypeRef(KIND_SCALAR, name)

    @staticmethod
    def enum(full_name: str) -> "TypeRef":
        return TypeRef(KIND_ENUM, full_name)

    @staticmethod
    def message(full_name: str) -> "TypeRef":
        return TypeRef(KIND_MESSAGE, full_name)

    @staticmethod
    def repeated(element: "TypeRef") -> "TypeRef":
        return TypeRef(KIND_REPEATED, element=element)

    @staticmethod
    def map(key: "TypeRef", value: "TypeRef") -> "TypeRef":
        return TypeRef(KIND_MAP, key=key, value=value)


@dataclass(frozen=True)
class FieldShape:
    name: str
    type: TypeRef
    number: int
    optional: bool = False   # explicit presence (proto2 optional, proto3 optional)
    oneof: str = ""


@dataclass(frozen=True)
class MessageShape:
    full_name: str
    symbol: Tuple[str, ...]   # unique nested path, e.g. ("Outer", "Inner")
    file: str
    fields: Tuple[FieldShape, ...] = ()


@dataclass(frozen=True)
class EnumValueShape:
    name: str
    number: int


@dataclass(frozen=True)
class EnumShape:
    full_name: str
    symbol: Tuple[str, ...]
    file: str
    values: Tuple[EnumValueShape, ...] = ()


@dataclass(frozen=True)
class Qos:
    """Quality-of-service hints. Zero / empty means unspecified."""
    ordering: str = ""
    delivery: str = ""
    buffer_size: int = 0
    persistent: bool = False
    wal_enabled: bool = False
    swap_enabled: bool = False
    priority: int = 0
    timeout_ms: int = 0
    retry_count: int = 0

    def items(self) -> Tuple[Tuple[str, object], ...]:
        """Non-default hints in declaration order."""
        out = []
        for key in ("ordering", "delivery", "buffer_size", "persistent",
                    "wal_enabled", "swap_enabled", "priority",
                    "timeout_ms", "retry_count"):
            val = getattr(self, key)
            if val:
                out.append((key, val))
        return tuple(out)


@dataclass(frozen=True)
class ChannelDecl:
    name: str
    direction: str
    message: TypeRef
    response: Optional[TypeRef]
    qos: Qos
    location: Location
    file: str
    origin: str        # "message", "method" or "service"
    declared_by: str   # fully-qualified declaration name


@dataclass(frozen=True)
class OperationDecl:
    name: str          # declaration-derived name, not yet target-cased
    kind: str
    channel: str
    message: TypeRef
    response: Optional[TypeRef] = None


@dataclass(frozen=True)
class IRModel:
    channels: Tuple[ChannelDecl, ...] = ()
    operations: Tuple[OperationDecl, ...] = ()
    messages: Tuple[MessageShape, ...] = ()
    enums: Tuple[EnumShape, ...] = ()
    packages: Tuple[str, ...] = ()       # proto packages of generated files
    files: Tuple[str, ...] = ()          # generated proto files, host order
    _index: Mapping[str, object] = field(
        default_factory=lambda: MappingProxyType({}),
        init=False, repr=False, compare=False)

    def __post_init__(self):
        index = {}
        for shape in self.messages:
            index[shape.full_name] = shape
        for shape in self.enums:
            index[shape.full_name] = shape
        object.__setattr__(self, "_index", MappingProxyType(index))

    def message(self, full_name: str) -> MessageShape:
        shape = self._index[full_name]
        if not isinstance(shape, MessageShape):
            raise KeyError(full_name)
        return shape

    def enum(self, full_name: str) -> EnumShape:
        shape = self._index[full_name]
        if not isinstance(shape, EnumShape):
            raise KeyError(full_name)
        return shape

    def symbol(self, full_name: str) -> Tuple[str, ...]:
        return self._index[full_name].symbol

    def has_type(self, full_name: str) -> bool:
        return full_name in self._index

    def operations_for(self, channel: str) -> Tuple[OperationDecl, ...]:
        return tuple(op for op in self.operations if op.channel == channel)

    @property
    def empty(self) -> bool:
        return not self.channels
