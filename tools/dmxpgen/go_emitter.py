"""
Go emitter: structs with Encode/Decode methods over the dmxp codec, and one
binding type per channel operation.

Every binding returns ``error``; transport errors are passed back to the
caller unchanged.
"""

from typing import List, Tuple

from .emitter import (
    Backend, channel_id, default_base_name, header_lines,
    operations_by_channel, qos_pairs, sanitize,
)
from .ir import (
    OP_CALL, OP_PUBLISH, OP_SUBSCRIBE,
    ChannelDecl, EnumShape, IRModel, MessageShape, OperationDecl,
)
from .types import TargetType, TypeMapper, pascal_case

GO_KEYWORDS = frozenset({
    "break", "case", "chan", "const", "continue", "default", "defer", "else",
    "fallthrough", "for", "func", "go", "goto", "if", "import", "interface",
    "map", "package", "range", "return", "select", "struct", "switch", "type",
    "var",
})

_SCALARS = {
    "double":   ("float64", "Double"),
    "float":    ("float32", "Float"),
    "int32":    ("int32", "Int32"),
    "int64":    ("int64", "Int64"),
    "uint32":   ("uint32", "Uint32"),
    "uint64":   ("uint64", "Uint64"),
    "sint32":   ("int32", "Sint32"),
    "sint64":   ("int64", "Sint64"),
    "fixed32":  ("uint32", "Fixed32"),
    "fixed64":  ("uint64", "Fixed64"),
    "sfixed32": ("int32", "Sfixed32"),
    "sfixed64": ("int64", "Sfixed64"),
    "bool":     ("bool", "Bool"),
    "string":   ("string", "String"),
    "bytes":    ("[]byte", "Bytes"),
}


class GoTypeMapper(TypeMapper):
    SCALARS = {k: TargetType(expr, f"codec.{hook}") for k, (expr, hook) in _SCALARS.items()}

    # Exported field names cannot hit keywords, but they can hit the
    # generated methods.
    RESERVED = GO_KEYWORDS | frozenset({"Encode", "Decode"})

    def operation_identifiers(self, base: str) -> Tuple[str, ...]:
        bindings = super().operation_identifiers(base)
        return bindings + tuple("New" + b for b in bindings) + (
            f"{base}Channel", f"{base}ChannelID", f"{base}Qos")

    def enum_type(self, name: str, shape: EnumShape) -> TargetType:
        return TargetType(name, f"codec.Enum[{name}]()")

    def message_type(self, name: str) -> TargetType:
        return TargetType(f"*{name}", f"codec.Message[{name}]()")

    def repeated_type(self, element: TargetType) -> TargetType:
        return TargetType(f"[]{element.element}", f"codec.Repeated({element.hook})")

    def map_of(self, key: TargetType, value: TargetType) -> TargetType:
        return TargetType(f"map[{key.element}]{value.element}",
                          f"codec.Map({key.hook}, {value.hook})")

    def field_name(self, name: str) -> str:
        return self.escape(pascal_case(name))


def method_name(op: OperationDecl) -> str:
    if op.kind == OP_CALL:
        return pascal_case(op.name)
    return op.kind.capitalize()


# ── Types ────────────────────────────────────────────────────────────

def _emit_enum(mapper: GoTypeMapper, shape: EnumShape) -> List[str]:
    name = mapper.type_name(shape.full_name)
    lines = ["", f"type {name} int32", ""]
    if shape.values:
        lines.append("const (")
        for v in shape.values:
            lines.append(f"\t{name}_{v.name} {name} = {v.number}")
        lines.append(")")
    return lines


def _emit_message(mapper: GoTypeMapper, shape: MessageShape) -> List[str]:
    name = mapper.type_name(shape.full_name)
    lines = ["", f"type {name} struct {{"]
    for f in shape.fields:
        t = mapper.map_type(f.type)
        lines.append(f"\t{mapper.field_name(f.name)} {t.expr}")
    lines.append("}")

    lines += [
        "",
        f"func (m *{name}) Encode() ([]byte, error) {{",
        "\tw := codec.NewWriter()",
    ]
    for f in shape.fields:
        t = mapper.map_type(f.type)
        lines += [
            f"\tif err := w.Write({f.number}, {t.hook}, m.{mapper.field_name(f.name)}); err != nil {{",
            "\t\treturn nil, err",
            "\t}",
        ]
    lines += [
        "\treturn w.Bytes(), nil",
        "}",
        "",
        f"func (m *{name}) Decode(data []byte) error {{",
        "\tr := codec.NewReader(data)",
        "\tfor r.Next() {",
        "\t\tvar err error",
        "\t\tswitch r.Field() {",
    ]
    for f in shape.fields:
        t = mapper.map_type(f.type)
        lines += [
            f"\t\tcase {f.number}:",
            f"\t\t\terr = r.Read({t.hook}, &m.{mapper.field_name(f.name)})",
        ]
    lines += [
        "\t\tdefault:",
        "\t\t\terr = r.Skip()",
        "\t\t}",
        "\t\tif err != nil {",
        "\t\t\treturn err",
        "\t\t}",
        "\t}",
        "\treturn r.Err()",
        "}",
    ]
    return lines


def emit_types(model: IRModel, mapper: GoTypeMapper) -> List[str]:
    lines: List[str] = []
    for shape in model.enums:
        lines += _emit_enum(mapper, shape)
    for shape in model.messages:
        lines += _emit_message(mapper, shape)
    return lines


# ── Channels ─────────────────────────────────────────────────────────

def _channel_consts(mapper: GoTypeMapper, channel: ChannelDecl, base: str) -> List[str]:
    lines = [
        "",
        "const (",
        f"\t{base}Channel   = \"{channel.name}\"",
        f"\t{base}ChannelID = {channel_id(channel)}",
        ")",
        "",
        f"var {base}Qos = dmxp.Qos{{",
    ]
    for k, v in qos_pairs(channel):
        lines.append(f"\t\"{k}\": \"{v}\",")
    lines.append("}")
    return lines


def _binding(mapper: GoTypeMapper, channel: ChannelDecl, op: OperationDecl, base: str) -> List[str]:
    tname = mapper.binding_name(op)
    req = mapper.type_name(op.message.name)
    lit = f"\"{channel.name}\""
    recv = tname[:1].lower()
    lines = [
        "",
        f"// {tname} binds {op.kind} on channel {lit}.",
        f"type {tname} struct {{",
        "\ttransport dmxp.Transport",
        "}",
        "",
        f"func New{tname}(transport dmxp.Transport) *{tname} {{",
        f"\treturn &{tname}{{transport: transport}}",
        "}",
        "",
    ]
    name = method_name(op)

    if op.kind == OP_PUBLISH:
        lines += [
            f"func ({recv} *{tname}) {name}(ctx context.Context, msg *{req}) error {{",
            "\tdata, err := msg.Encode()",
            "\tif err != nil {",
            "\t\treturn err",
            "\t}",
            f"\treturn {recv}.transport.Publish(ctx, {lit}, data, {base}Qos)",
            "}",
        ]
    elif op.kind == OP_SUBSCRIBE:
        lines += [
            f"func ({recv} *{tname}) {name}(ctx context.Context, handler func(context.Context, *{req}) error) (dmxp.Subscription, error) {{",
            f"\treturn {recv}.transport.Subscribe(ctx, {lit}, {base}Qos, func(ctx context.Context, data []byte) error {{",
            f"\t\tmsg := new({req})",
            "\t\tif err := msg.Decode(data); err != nil {",
            "\t\t\treturn err",
            "\t\t}",
            "\t\treturn handler(ctx, msg)",
            "\t})",
            "}",
        ]
    elif op.kind == OP_CALL:
        resp = mapper.type_name(op.response.name)
        lines += [
            f"func ({recv} *{tname}) {name}(ctx context.Context, req *{req}) (*{resp}, error) {{",
            "\tdata, err := req.Encode()",
            "\tif err != nil {",
            "\t\treturn nil, err",
            "\t}",
            f"\treply, err := {recv}.transport.Call(ctx, {lit}, data, {base}Qos)",
            "\tif err != nil {",
            "\t\treturn nil, err",
            "\t}",
            f"\tresp := new({resp})",
            "\tif err := resp.Decode(reply); err != nil {",
            "\t\treturn nil, err",
            "\t}",
            "\treturn resp, nil",
            "}",
        ]
    else:
        resp = mapper.type_name(op.response.name)
        lines += [
            f"func ({recv} *{tname}) {name}(ctx context.Context, handler func(context.Context, *{req}) (*{resp}, error)) (dmxp.Subscription, error) {{",
            f"\treturn {recv}.transport.Serve(ctx, {lit}, {base}Qos, func(ctx context.Context, data []byte) ([]byte, error) {{",
            f"\t\treq := new({req})",
            "\t\tif err := req.Decode(data); err != nil {",
            "\t\t\treturn nil, err",
            "\t\t}",
            "\t\tresp, err := handler(ctx, req)",
            "\t\tif err != nil {",
            "\t\t\treturn nil, err",
            "\t\t}",
            "\t\treturn resp.Encode()",
            "\t})",
            "}",
        ]
    return lines


def emit_channels(model: IRModel, mapper: GoTypeMapper) -> List[str]:
    lines: List[str] = []
    for channel, ops in operations_by_channel(model):
        base = mapper.operation_base(ops[0].name)
        lines += _channel_consts(mapper, channel, base)
        for op in ops:
            lines += _binding(mapper, channel, op, base)
    return lines


def _imports(paths: List[str]) -> List[str]:
    lines = ["import ("]
    lines += [f"\t\"{p}\"" for p in paths]
    lines.append(")")
    return lines


class GoBackend(Backend):
    tag = "go"
    mapper_class = GoTypeMapper
    default_runtime = "github.com/dmxp/dmxp-go/dmxp"

    def package_name(self) -> str:
        if not self.config.package_name:
            return default_base_name(self.model).lower()
        name = self.config.package_name
        clean = sanitize(name).lower().lstrip("_") or "dmxp"
        if clean != name:
            self.sink.warning(f"go: package_name {name!r} is not a valid "
                              f"package name; using {clean!r}")
        return clean

    def render(self) -> List[Tuple[str, str]]:
        pkg = self.package_name()
        codec_path = f"{self.runtime}/codec"
        head = header_lines("//", self.tag, self.model)
        types = emit_types(self.model, self.mapper)
        channels = emit_channels(self.model, self.mapper)

        if not self.config.split_files:
            lines = head + ["", f"package {pkg}", ""]
            lines += _imports(["context", "", self.runtime, codec_path])
            lines += types + channels
            return [(f"{pkg}.dmxp.go", _gofmt_join(lines))]

        type_lines = head + ["", f"package {pkg}", ""]
        type_lines += _imports([codec_path]) + types
        chan_lines = head + ["", f"package {pkg}", ""]
        chan_lines += _imports(["context", "", self.runtime]) + channels
        return [
            (f"{pkg}_types.dmxp.go", _gofmt_join(type_lines)),
            (f"{pkg}_channels.dmxp.go", _gofmt_join(chan_lines)),
        ]


def _gofmt_join(lines: List[str]) -> str:
    # The blank entry between import groups is rendered as an empty line.
    return "\n".join("" if line == "\t\"\"" else line for line in lines) + "\n"
