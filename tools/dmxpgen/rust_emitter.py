"""
Rust emitter: plain structs implementing ``codec::Message`` and one binding
struct per channel operation, generic over the dmxp ``Transport`` trait.

Every binding returns ``Result<_, dmxp::Error>``.
"""

from typing import List, Tuple

from .emitter import (
    Backend, channel_id, default_base_name, header_lines,
    operations_by_channel, qos_pairs, sanitize,
)
from .ir import (
    KIND_MAP, OP_CALL, OP_PUBLISH, OP_SUBSCRIBE,
    ChannelDecl, EnumShape, IRModel, MessageShape, OperationDecl,
)
from .types import (
    BINDING_SUFFIX, TargetType, TypeMapper, pascal_case, screaming_case, snake_case,
)

RUST_KEYWORDS = frozenset({
    "as", "async", "await", "break", "const", "continue", "crate", "dyn",
    "else", "enum", "extern", "false", "fn", "for", "if", "impl", "in",
    "let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
    "self", "Self", "static", "struct", "super", "trait", "true", "type",
    "unsafe", "use", "where", "while", "abstract", "become", "box", "do",
    "final", "macro", "override", "priv", "typeof", "unsized", "virtual",
    "yield", "try",
})

_SCALARS = {
    "double":   ("f64", "codec::Double"),
    "float":    ("f32", "codec::Float"),
    "int32":    ("i32", "codec::Int32"),
    "int64":    ("i64", "codec::Int64"),
    "uint32":   ("u32", "codec::Uint32"),
    "uint64":   ("u64", "codec::Uint64"),
    "sint32":   ("i32", "codec::Sint32"),
    "sint64":   ("i64", "codec::Sint64"),
    "fixed32":  ("u32", "codec::Fixed32"),
    "fixed64":  ("u64", "codec::Fixed64"),
    "sfixed32": ("i32", "codec::Sfixed32"),
    "sfixed64": ("i64", "codec::Sfixed64"),
    "bool":     ("bool", "codec::Bool"),
    "string":   ("String", "codec::Str"),
    "bytes":    ("Vec<u8>", "codec::Bytes"),
}


class RustTypeMapper(TypeMapper):
    SCALARS = {k: TargetType(expr, hook) for k, (expr, hook) in _SCALARS.items()}

    # Keywords plus names the generated module imports.
    RESERVED = RUST_KEYWORDS | frozenset({
        "codec", "Error", "Transport", "Subscription", "HashMap",
        "Option", "Box", "Vec", "String", "Result",
    })

    def symbol_name(self, symbol: Tuple[str, ...]) -> str:
        return "".join(symbol)

    def operation_identifiers(self, base: str) -> Tuple[str, ...]:
        const = screaming_case(base)
        return super().operation_identifiers(base) + (
            f"{const}_CHANNEL", f"{const}_CHANNEL_ID", f"{const}_QOS")

    def enum_type(self, name: str, shape: EnumShape) -> TargetType:
        return TargetType(name, f"codec::Enum<{name}>")

    def message_type(self, name: str) -> TargetType:
        # Boxed so recursive messages have a finite size.
        return TargetType(f"Option<Box<{name}>>", f"codec::Msg<{name}>", bare=name)

    def repeated_type(self, element: TargetType) -> TargetType:
        return TargetType(f"Vec<{element.element}>", f"codec::Repeated<{element.hook}>")

    def map_of(self, key: TargetType, value: TargetType) -> TargetType:
        return TargetType(f"HashMap<{key.element}, {value.element}>",
                          f"codec::Map<{key.hook}, {value.hook}>")

    def field_name(self, name: str) -> str:
        return self.escape(snake_case(name))


def method_name(mapper: RustTypeMapper, op: OperationDecl) -> str:
    if op.kind == OP_CALL:
        return mapper.escape(snake_case(op.name))
    return op.kind


def variant_names(shape: EnumShape) -> List[Tuple[str, int]]:
    """
    (variant, number) per enum value, aliases dropped.

    The SCREAMING_CASE enum-name prefix protobuf style guides ask for is
    stripped when every value carries it and the result stays valid.
    """
    values = []
    seen = set()
    for v in shape.values:
        if v.number in seen:
            continue
        seen.add(v.number)
        values.append(v)

    prefix = screaming_case(shape.symbol[-1]) + "_"
    stripped = [v.name[len(prefix):] for v in values if v.name.startswith(prefix)]
    use_stripped = (
        len(stripped) == len(values)
        and all(s and not s[0].isdigit() for s in stripped)
        and len({pascal_case(s.lower()) for s in stripped}) == len(stripped)
    )

    out = []
    for v in values:
        name = v.name[len(prefix):] if use_stripped else v.name
        variant = pascal_case(name.lower())
        if variant in RUST_KEYWORDS:
            variant += "_"
        out.append((variant, v.number))
    return out


# ── Messages ─────────────────────────────────────────────────────────

def _emit_enum(mapper: RustTypeMapper, shape: EnumShape) -> List[str]:
    name = mapper.type_name(shape.full_name)
    variants = variant_names(shape)
    lines = [
        "",
        "#[derive(Clone, Copy, Debug, Default, PartialEq, Eq, Hash)]",
        "#[repr(i32)]",
        f"pub enum {name} {{",
    ]
    for i, (variant, number) in enumerate(variants):
        if i == 0:
            lines.append("    #[default]")
        lines.append(f"    {variant} = {number},")
    lines += [
        "}",
        "",
        f"impl codec::EnumValue for {name} {{",
        "    fn from_i32(value: i32) -> Option<Self> {",
        "        match value {",
    ]
    for variant, number in variants:
        lines.append(f"            {number} => Some({name}::{variant}),")
    lines += [
        "            _ => None,",
        "        }",
        "    }",
        "",
        "    fn to_i32(self) -> i32 {",
        "        self as i32",
        "    }",
        "}",
    ]
    return lines


def _emit_message(mapper: RustTypeMapper, shape: MessageShape) -> List[str]:
    name = mapper.type_name(shape.full_name)
    lines = ["", "#[derive(Clone, Debug, Default, PartialEq)]"]
    if not shape.fields:
        lines.append(f"pub struct {name} {{}}")
    else:
        lines.append(f"pub struct {name} {{")
        for f in shape.fields:
            lines.append(f"    pub {mapper.field_name(f.name)}: {mapper.map_type(f.type).expr},")
        lines.append("}")

    w = "w" if shape.fields else "_w"
    lines += [
        "",
        f"impl codec::Message for {name} {{",
        f"    fn encode(&self, {w}: &mut codec::Writer) -> Result<(), Error> {{",
    ]
    for f in shape.fields:
        hook = mapper.map_type(f.type).hook
        lines.append(f"        w.write::<{hook}>({f.number}, &self.{mapper.field_name(f.name)})?;")
    lines += [
        "        Ok(())",
        "    }",
        "",
        "    fn decode_field(&mut self, field: u32, r: &mut codec::Reader) -> Result<(), Error> {",
        "        match field {",
    ]
    for f in shape.fields:
        hook = mapper.map_type(f.type).hook
        lines.append(f"            {f.number} => r.read::<{hook}>(&mut self.{mapper.field_name(f.name)}),")
    lines += [
        "            _ => r.skip(),",
        "        }",
        "    }",
        "}",
    ]
    return lines


def emit_messages(model: IRModel, mapper: RustTypeMapper) -> List[str]:
    lines: List[str] = []
    for shape in model.enums:
        lines += _emit_enum(mapper, shape)
    for shape in model.messages:
        lines += _emit_message(mapper, shape)
    return lines


# ── Channels ─────────────────────────────────────────────────────────

def _channel_consts(channel: ChannelDecl, base: str) -> List[str]:
    pairs = ", ".join(f"(\"{k}\", \"{v}\")" for k, v in qos_pairs(channel))
    return [
        "",
        f"pub const {base}_CHANNEL: &str = \"{channel.name}\";",
        f"pub const {base}_CHANNEL_ID: u32 = {channel_id(channel)};",
        f"pub const {base}_QOS: &[(&str, &str)] = &[{pairs}];",
    ]


def _binding(mapper: RustTypeMapper, channel: ChannelDecl, op: OperationDecl,
             base: str) -> List[str]:
    tname = mapper.binding_name(op)
    req = mapper.map_type(op.message).element
    lit = f"\"{channel.name}\""
    qos = f"{base}_QOS"
    name = method_name(mapper, op)
    lines = [
        "",
        f"/// {BINDING_SUFFIX[op.kind]} for {op.kind} channel {lit}.",
        f"pub struct {tname}<T: Transport> {{",
        "    transport: T,",
        "}",
        "",
        f"impl<T: Transport> {tname}<T> {{",
        "    pub fn new(transport: T) -> Self {",
        "        Self { transport }",
        "    }",
        "",
    ]

    if op.kind == OP_PUBLISH:
        lines += [
            f"    pub fn {name}(&self, message: &{req}) -> Result<(), Error> {{",
            f"        self.transport.publish({lit}, &codec::encode(message)?, {qos})",
            "    }",
        ]
    elif op.kind == OP_SUBSCRIBE:
        lines += [
            f"    pub fn {name}<F>(&self, mut handler: F) -> Result<Subscription, Error>",
            "    where",
            f"        F: FnMut({req}) + Send + 'static,",
            "    {",
            f"        self.transport.subscribe({lit}, {qos}, Box::new(move |data: &[u8]| {{",
            f"            handler(codec::decode::<{req}>(data)?);",
            "            Ok(())",
            "        }))",
            "    }",
        ]
    elif op.kind == OP_CALL:
        resp = mapper.map_type(op.response).element
        lines += [
            f"    pub fn {name}(&self, request: &{req}) -> Result<{resp}, Error> {{",
            f"        let reply = self.transport.call({lit}, &codec::encode(request)?, {qos})?;",
            f"        codec::decode::<{resp}>(&reply)",
            "    }",
        ]
    else:
        resp = mapper.map_type(op.response).element
        lines += [
            f"    pub fn {name}<F>(&self, mut handler: F) -> Result<Subscription, Error>",
            "    where",
            f"        F: FnMut({req}) -> Result<{resp}, Error> + Send + 'static,",
            "    {",
            f"        self.transport.serve({lit}, {qos}, Box::new(move |data: &[u8]| {{",
            f"            let request = codec::decode::<{req}>(data)?;",
            "            codec::encode(&handler(request)?)",
            "        }))",
            "    }",
        ]
    lines.append("}")
    return lines


def emit_channels(model: IRModel, mapper: RustTypeMapper) -> List[str]:
    lines: List[str] = []
    for channel, ops in operations_by_channel(model):
        base = screaming_case(mapper.operation_base(ops[0].name))
        lines += _channel_consts(channel, base)
        for op in ops:
            lines += _binding(mapper, channel, op, base)
    return lines


def _uses(model: IRModel, runtime: str, types: bool, channels: bool) -> List[str]:
    lines = []
    if types and _needs_hashmap(model):
        lines += ["use std::collections::HashMap;", ""]
    names = ["codec", "Error"]
    if channels:
        names += ["Subscription", "Transport"]
    lines.append(f"use {runtime}::{{{', '.join(names)}}};")
    return lines


def _needs_hashmap(model: IRModel) -> bool:
    return any(f.type.kind == KIND_MAP for m in model.messages for f in m.fields)


class RustBackend(Backend):
    tag = "rust"
    mapper_class = RustTypeMapper
    default_runtime = "dmxp"

    def module_name(self) -> str:
        name = self.config.package_name or default_base_name(self.model)
        clean = sanitize(name).lower()
        if clean in RUST_KEYWORDS:
            clean += self.mapper.escape_suffix
        if clean != name:
            self.sink.warning(f"rust: package_name {name!r} is not a valid "
                              f"module name; using {clean!r}")
        return clean

    def render(self) -> List[Tuple[str, str]]:
        module = self.module_name()
        head = header_lines("//", self.tag, self.model)
        messages = emit_messages(self.model, self.mapper)
        channels = emit_channels(self.model, self.mapper)

        if not self.config.split_files:
            lines = head + ["", "#![allow(dead_code, unused_imports)]", ""]
            lines += _uses(self.model, self.runtime, True, True)
            lines += messages + channels
            return [(f"{module}.rs", "\n".join(lines) + "\n")]

        index = head + [
            "",
            "mod channels;",
            "mod messages;",
            "",
            "pub use channels::*;",
            "pub use messages::*;",
        ]
        msg = head + ["", "#![allow(dead_code, unused_imports)]", ""]
        msg += _uses(self.model, self.runtime, True, False) + messages
        chan = head + ["", "#![allow(dead_code, unused_imports)]", ""]
        chan += _uses(self.model, self.runtime, False, True)
        chan += ["", "use super::messages::*;"] + channels
        return [
            (f"{module}/mod.rs", "\n".join(index) + "\n"),
            (f"{module}/messages.rs", "\n".join(msg) + "\n"),
            (f"{module}/channels.rs", "\n".join(chan) + "\n"),
        ]
