"""
Python emitter: dataclass messages with table-driven codecs, and one
binding class per channel operation.

Generated bindings take a ``dmxp.Transport``; transport failures surface as
``dmxp.TransportError`` raised from the transport and are never caught.
"""

import keyword
from typing import List, Tuple

from .emitter import (
    Backend, channel_id, default_base_name, header_lines,
    operations_by_channel, qos_pairs, sanitize,
)
from .ir import (
    OP_CALL, OP_PUBLISH, OP_SERVE, OP_SUBSCRIBE,
    EnumShape, IRModel, OperationDecl, ChannelDecl,
)
from .types import BINDING_SUFFIX, TargetType, TypeMapper, snake_case

_INT = ("int32", "int64", "uint32", "uint64", "sint32", "sint64",
        "fixed32", "fixed64", "sfixed32", "sfixed64")


class PythonTypeMapper(TypeMapper):
    SCALARS = {
        "double": TargetType("float", "codec.DOUBLE", "0.0"),
        "float":  TargetType("float", "codec.FLOAT", "0.0"),
        "bool":   TargetType("bool", "codec.BOOL", "False"),
        "string": TargetType("str", "codec.STRING", '""'),
        "bytes":  TargetType("bytes", "codec.BYTES", 'b""'),
    }
    SCALARS.update({name: TargetType("int", f"codec.{name.upper()}", "0") for name in _INT})

    # Keywords plus names the generated module itself binds.
    RESERVED = frozenset(keyword.kwlist) | frozenset({
        "encode", "decode", "FIELDS", "codec", "field", "dataclass", "enum",
        "Optional", "List", "Dict", "Callable", "Transport", "self", "cls",
    })

    def enum_type(self, name: str, shape: EnumShape) -> TargetType:
        if shape.values:
            default = f"{name}.{self.escape(shape.values[0].name)}"
        else:
            default = f"{name}(0)"
        return TargetType(name, f"codec.enum({name})", default)

    def message_type(self, name: str) -> TargetType:
        return TargetType(f"Optional[{name}]", f"codec.message({name})", "None", bare=name)

    def repeated_type(self, element: TargetType) -> TargetType:
        return TargetType(f"List[{element.element}]", f"codec.repeated({element.hook})",
                          "field(default_factory=list)")

    def map_of(self, key: TargetType, value: TargetType) -> TargetType:
        return TargetType(f"Dict[{key.element}, {value.element}]",
                          f"codec.map({key.hook}, {value.hook})",
                          "field(default_factory=dict)")


def method_name(mapper: PythonTypeMapper, op: OperationDecl) -> str:
    if op.kind == OP_CALL:
        return mapper.escape(snake_case(op.name))
    return op.kind


# ── Messages ─────────────────────────────────────────────────────────

def message_names(model: IRModel, mapper: PythonTypeMapper) -> List[str]:
    names = [mapper.type_name(e.full_name) for e in model.enums]
    names += [mapper.type_name(m.full_name) for m in model.messages]
    return names


def message_imports(runtime: str) -> List[str]:
    return [
        "import enum",
        "from dataclasses import dataclass, field",
        "from typing import Dict, List, Optional",
        "",
        f"from {runtime} import codec",
    ]


def emit_messages(model: IRModel, mapper: PythonTypeMapper) -> List[str]:
    """Enum classes, message dataclasses and their field tables."""
    lines: List[str] = []

    for shape in model.enums:
        name = mapper.type_name(shape.full_name)
        lines += ["", "", f"class {name}(enum.IntEnum):"]
        if not shape.values:
            lines.append("    pass")
        for v in shape.values:
            lines.append(f"    {mapper.escape(v.name)} = {v.number}")

    for shape in model.messages:
        name = mapper.type_name(shape.full_name)
        lines += ["", "", "@dataclass", f"class {name}:"]
        for f in shape.fields:
            t = mapper.map_type(f.type)
            lines.append(f"    {mapper.escape(f.name)}: {t.expr} = {t.default}")
        if shape.fields:
            lines.append("")
        lines += [
            "    def encode(self) -> bytes:",
            f"        return codec.encode(self, {name}.FIELDS)",
            "",
            "    @classmethod",
            f"    def decode(cls, data: bytes) -> \"{name}\":",
            f"        return codec.decode(cls, {name}.FIELDS, data)",
        ]

    # Tables come last so every hook can name any class.
    lines += ["", "", "# Field tables: (number, attribute, codec)."]
    for shape in model.messages:
        name = mapper.type_name(shape.full_name)
        if not shape.fields:
            lines.append(f"{name}.FIELDS = ()")
            continue
        lines.append(f"{name}.FIELDS = (")
        for f in shape.fields:
            t = mapper.map_type(f.type)
            lines.append(f"    codec.Field({f.number}, \"{mapper.escape(f.name)}\", {t.hook}),")
        lines.append(")")
    return lines


# ── Channels ─────────────────────────────────────────────────────────

def _binding(mapper: PythonTypeMapper, channel: ChannelDecl, op: OperationDecl) -> List[str]:
    cls = mapper.binding_name(op)
    req = mapper.map_type(op.message).element
    lit = f"\"{channel.name}\""
    qos = ", ".join(f"\"{k}\": \"{v}\"" for k, v in qos_pairs(channel))

    if op.kind in (OP_CALL, OP_SERVE):
        resp = mapper.map_type(op.response).element
        summary = f"{op.kind} channel {lit} ({req} -> {resp})"
    else:
        summary = f"{op.kind} channel {lit} ({req})"

    lines = [
        "",
        "",
        f"class {cls}:",
        f"    \"\"\"{BINDING_SUFFIX[op.kind]} for {summary}.",
        "",
        "    Transport failures raise dmxp.TransportError.",
        "    \"\"\"",
        "",
        f"    CHANNEL = {lit}",
        f"    CHANNEL_ID = {channel_id(channel)}",
        f"    QOS = {{{qos}}}",
        "",
        "    def __init__(self, transport: Transport):",
        "        self._transport = transport",
        "",
    ]
    name = method_name(mapper, op)

    if op.kind == OP_PUBLISH:
        lines += [
            f"    def {name}(self, message: {req}) -> None:",
            f"        self._transport.publish({lit}, message.encode(), qos=self.QOS)",
        ]
    elif op.kind == OP_SUBSCRIBE:
        lines += [
            f"    def {name}(self, handler: Callable[[{req}], None]):",
            "        def _deliver(data: bytes) -> None:",
            f"            handler({req}.decode(data))",
            "",
            f"        return self._transport.subscribe({lit}, _deliver, qos=self.QOS)",
        ]
    elif op.kind == OP_CALL:
        timeout = channel.qos.timeout_ms or None
        lines += [
            f"    def {name}(self, request: {req}, timeout_ms: Optional[int] = {timeout}) -> {resp}:",
            f"        reply = self._transport.call({lit}, request.encode(), qos=self.QOS,",
            "                                     timeout_ms=timeout_ms)",
            f"        return {resp}.decode(reply)",
        ]
    else:
        lines += [
            f"    def {name}(self, handler: Callable[[{req}], {resp}]):",
            "        def _dispatch(data: bytes) -> bytes:",
            f"            return handler({req}.decode(data)).encode()",
            "",
            f"        return self._transport.serve({lit}, _dispatch, qos=self.QOS)",
        ]
    return lines


def binding_names(model: IRModel, mapper: PythonTypeMapper) -> List[str]:
    return [mapper.binding_name(op) for op in model.operations]


def channel_imports(runtime: str) -> List[str]:
    return [
        "from typing import Callable, Optional",
        "",
        f"from {runtime} import Transport",
    ]


def emit_channels(model: IRModel, mapper: PythonTypeMapper) -> List[str]:
    """One class per operation, grouped by channel in declaration order."""
    lines: List[str] = []
    for channel, ops in operations_by_channel(model):
        for op in ops:
            lines += _binding(mapper, channel, op)
    return lines


def _all(names: List[str]) -> List[str]:
    lines = ["__all__ = ["]
    lines += [f"    \"{n}\"," for n in names]
    lines.append("]")
    return lines


class PythonBackend(Backend):
    tag = "python"
    mapper_class = PythonTypeMapper
    default_runtime = "dmxp"

    def package_name(self) -> str:
        name = self.config.package_name or f"{default_base_name(self.model)}_dmxp"
        clean = sanitize(name)
        if clean != name:
            self.sink.warning(f"python: package_name {name!r} is not a valid "
                              f"module name; using {clean!r}")
        return clean

    def output_path(self, name: str) -> str:
        module_dir = self.config.module_path.strip().strip(".").replace(".", "/")
        return f"{module_dir}/{name}" if module_dir else name

    def render(self) -> List[Tuple[str, str]]:
        pkg = self.package_name()
        mapper = self.mapper
        head = header_lines("#", self.tag, self.model)
        types = message_names(self.model, mapper)
        bindings = binding_names(self.model, mapper)
        messages = emit_messages(self.model, mapper)
        channels = emit_channels(self.model, mapper)

        if not self.config.split_files:
            lines = head + [f"\"\"\"dmxp bindings ({pkg}).\"\"\"", "",
                            "from __future__ import annotations", ""]
            lines += [
                "import enum",
                "from dataclasses import dataclass, field",
                "from typing import Callable, Dict, List, Optional",
                "",
                f"from {self.runtime} import Transport, codec",
                "",
            ]
            lines += _all(types + bindings) + messages + channels
            return [(f"{pkg}.py", "\n".join(lines) + "\n")]

        init = head + [
            f"\"\"\"dmxp bindings ({pkg}).\"\"\"",
            "",
            "from .channels import *  # noqa: F401,F403",
            "from .messages import *  # noqa: F401,F403",
        ]

        msg = head + ["\"\"\"Message and enum types.\"\"\"", "",
                      "from __future__ import annotations", ""]
        msg += message_imports(self.runtime) + [""] + _all(types) + messages

        chan = head + ["\"\"\"Channel bindings.\"\"\"", "",
                       "from __future__ import annotations", ""]
        chan += channel_imports(self.runtime)
        chan += ["", "from .messages import ("]
        chan += [f"    {n}," for n in types]
        chan += [")", ""]
        chan += _all(bindings) + channels

        return [
            (f"{pkg}/__init__.py", "\n".join(init) + "\n"),
            (f"{pkg}/messages.py", "\n".join(msg) + "\n"),
            (f"{pkg}/channels.py", "\n".join(chan) + "\n"),
        ]
