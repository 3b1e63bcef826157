"""
C++ emitter: header + source pairs with message structs, channel
constants and one binding class per channel operation.

Bindings hold a ``::dmxp::Transport &`` and report failure through
``::dmxp::Status`` / ``::dmxp::Result<T>``; nothing throws.
"""

import re
from typing import List, Tuple

from .emitter import (
    Backend, channel_id, default_base_name, header_lines,
    operations_by_channel, qos_pairs, sanitize,
)
from .ir import (
    OP_CALL, OP_PUBLISH, OP_SUBSCRIBE,
    ChannelDecl, EnumShape, IRModel, MessageShape, OperationDecl,
)
from .types import BINDING_SUFFIX, TargetType, TypeMapper, camel_case

CPP_KEYWORDS = frozenset({
    "alignas", "alignof", "and", "and_eq", "asm", "auto", "bitand", "bitor",
    "bool", "break", "case", "catch", "char", "char8_t", "char16_t",
    "char32_t", "class", "compl", "concept", "const", "consteval",
    "constexpr", "constinit", "const_cast", "continue", "co_await",
    "co_return", "co_yield", "decltype", "default", "delete", "do", "double",
    "dynamic_cast", "else", "enum", "explicit", "export", "extern", "false",
    "float", "for", "friend", "goto", "if", "inline", "int", "long",
    "mutable", "namespace", "new", "noexcept", "not", "not_eq", "nullptr",
    "operator", "or", "or_eq", "private", "protected", "public", "register",
    "reinterpret_cast", "requires", "return", "short", "signed", "sizeof",
    "static", "static_assert", "static_cast", "struct", "switch", "template",
    "this", "thread_local", "throw", "true", "try", "typedef", "typeid",
    "typename", "union", "unsigned", "using", "virtual", "void", "volatile",
    "wchar_t", "while", "xor", "xor_eq",
})

CODEC = "::dmxp::codec"

_SCALARS = {
    "double":   ("double", "Double"),
    "float":    ("float", "Float"),
    "int32":    ("std::int32_t", "Int32"),
    "int64":    ("std::int64_t", "Int64"),
    "uint32":   ("std::uint32_t", "Uint32"),
    "uint64":   ("std::uint64_t", "Uint64"),
    "sint32":   ("std::int32_t", "Sint32"),
    "sint64":   ("std::int64_t", "Sint64"),
    "fixed32":  ("std::uint32_t", "Fixed32"),
    "fixed64":  ("std::uint64_t", "Fixed64"),
    "sfixed32": ("std::int32_t", "Sfixed32"),
    "sfixed64": ("std::int64_t", "Sfixed64"),
    "bool":     ("bool", "Bool"),
    "string":   ("std::string", "String"),
    "bytes":    ("std::vector<std::uint8_t>", "Bytes"),
}


class CppTypeMapper(TypeMapper):
    SCALARS = {k: TargetType(expr, f"{CODEC}::{hook}", "{}")
               for k, (expr, hook) in _SCALARS.items()}

    # Keywords plus the member functions every generated struct declares.
    RESERVED = CPP_KEYWORDS | frozenset({"encode", "decodeField"})

    def operation_identifiers(self, base: str) -> Tuple[str, ...]:
        return super().operation_identifiers(base) + (
            f"k{base}Channel", f"k{base}ChannelId", f"k{base}Qos")

    def enum_type(self, name: str, shape: EnumShape) -> TargetType:
        return TargetType(name, f"{CODEC}::Enum<{name}>", "{}")

    def message_type(self, name: str) -> TargetType:
        return TargetType(f"std::shared_ptr<{name}>", f"{CODEC}::Message<{name}>",
                          bare=name)

    def repeated_type(self, element: TargetType) -> TargetType:
        return TargetType(f"std::vector<{element.element}>",
                          f"{CODEC}::Repeated<{element.hook}>")

    def map_of(self, key: TargetType, value: TargetType) -> TargetType:
        return TargetType(f"std::map<{key.element}, {value.element}>",
                          f"{CODEC}::Map<{key.hook}, {value.hook}>")


def method_name(mapper: CppTypeMapper, op: OperationDecl) -> str:
    if op.kind == OP_CALL:
        return mapper.escape(camel_case(op.name))
    return op.kind


def _open_ns(namespaces: List[str]) -> List[str]:
    lines = []
    for ns in namespaces:
        lines += [f"namespace {ns}", "{"]
    return lines


def _close_ns(namespaces: List[str]) -> List[str]:
    return [f"}} // namespace {ns}" for ns in reversed(namespaces)]


# ── Types ────────────────────────────────────────────────────────────

def emit_types_h(model: IRModel, mapper: CppTypeMapper) -> List[str]:
    lines: List[str] = []

    for shape in model.enums:
        name = mapper.type_name(shape.full_name)
        lines += ["", f"enum class {name} : std::int32_t", "{"]
        for v in shape.values:
            lines.append(f"    {mapper.escape(v.name)} = {v.number},")
        lines.append("};")

    if model.messages:
        lines.append("")
        for shape in model.messages:
            lines.append(f"struct {mapper.type_name(shape.full_name)};")

    for shape in model.messages:
        lines += _struct(mapper, shape)
    return lines


def _struct(mapper: CppTypeMapper, shape: MessageShape) -> List[str]:
    name = mapper.type_name(shape.full_name)
    lines = ["", f"struct {name}", "{"]
    for f in shape.fields:
        t = mapper.map_type(f.type)
        lines.append(f"    {t.expr} {mapper.escape(f.name)}{t.default};")
    if shape.fields:
        lines.append("")
    lines += [
        f"    ::dmxp::Status encode({CODEC}::Writer &w) const;",
        f"    ::dmxp::Status decodeField(std::uint32_t field, {CODEC}::Reader &r);",
        "};",
    ]
    return lines


def emit_types_cpp(model: IRModel, mapper: CppTypeMapper) -> List[str]:
    lines: List[str] = []
    for shape in model.messages:
        name = mapper.type_name(shape.full_name)
        w = "w" if shape.fields else "/*w*/"
        lines += ["", f"::dmxp::Status {name}::encode({CODEC}::Writer &{w}) const", "{"]
        for f in shape.fields:
            t = mapper.map_type(f.type)
            lines += [
                f"    if (auto status = w.write<{t.hook}>({f.number}, {mapper.escape(f.name)}); !status.ok())",
                "    {",
                "        return status;",
                "    }",
            ]
        lines += [
            "    return ::dmxp::Status::Ok();",
            "}",
            "",
            f"::dmxp::Status {name}::decodeField(std::uint32_t field, {CODEC}::Reader &r)",
            "{",
            "    switch (field)",
            "    {",
        ]
        for f in shape.fields:
            t = mapper.map_type(f.type)
            lines += [
                f"    case {f.number}:",
                f"        return r.read<{t.hook}>({mapper.escape(f.name)});",
            ]
        lines += [
            "    default:",
            "        return r.skip();",
            "    }",
            "}",
        ]
    return lines


# ── Channels ─────────────────────────────────────────────────────────

def _const_base(mapper: CppTypeMapper, op: OperationDecl) -> str:
    return "k" + mapper.operation_base(op.name)


def emit_channels_h(model: IRModel, mapper: CppTypeMapper) -> List[str]:
    lines: List[str] = []
    for channel, ops in operations_by_channel(model):
        base = _const_base(mapper, ops[0])
        qos = ", ".join(f"{{\"{k}\", \"{v}\"}}" for k, v in qos_pairs(channel))
        lines += [
            "",
            f"inline constexpr const char *{base}Channel = \"{channel.name}\";",
            f"inline constexpr std::uint32_t {base}ChannelId = {channel_id(channel)}u;",
            f"inline const ::dmxp::Qos {base}Qos = {{{qos}}};",
        ]
        for op in ops:
            lines += _class_decl(mapper, channel, op)
    return lines


def _signature(mapper: CppTypeMapper, op: OperationDecl, owner: str = "") -> str:
    req = mapper.map_type(op.message).element
    name = method_name(mapper, op)
    scope = f"{owner}::" if owner else ""
    if op.kind == OP_PUBLISH:
        return f"::dmxp::Status {scope}{name}(const {req} &message)"
    if op.kind == OP_SUBSCRIBE:
        return (f"::dmxp::Result<::dmxp::Subscription> {scope}{name}("
                f"std::function<void(const {req} &)> handler)")
    resp = mapper.map_type(op.response).element
    if op.kind == OP_CALL:
        return f"::dmxp::Result<{resp}> {scope}{name}(const {req} &request)"
    return (f"::dmxp::Result<::dmxp::Subscription> {scope}{name}("
            f"std::function<::dmxp::Result<{resp}>(const {req} &)> handler)")


def _class_decl(mapper: CppTypeMapper, channel: ChannelDecl, op: OperationDecl) -> List[str]:
    cls = mapper.binding_name(op)
    return [
        "",
        f"/// {BINDING_SUFFIX[op.kind]} for {op.kind} channel \"{channel.name}\".",
        f"class {cls}",
        "{",
        "public:",
        f"    explicit {cls}(::dmxp::Transport &transport);",
        "",
        f"    {_signature(mapper, op)};",
        "",
        "private:",
        "    ::dmxp::Transport &m_transport;",
        "};",
    ]


def emit_channels_cpp(model: IRModel, mapper: CppTypeMapper) -> List[str]:
    lines: List[str] = []
    for channel, ops in operations_by_channel(model):
        base = _const_base(mapper, ops[0])
        for op in ops:
            lines += _class_def(mapper, channel, op, base)
    return lines


def _class_def(mapper: CppTypeMapper, channel: ChannelDecl, op: OperationDecl,
               base: str) -> List[str]:
    cls = mapper.binding_name(op)
    req = mapper.map_type(op.message).element
    lit = f"\"{channel.name}\""
    qos = f"{base}Qos"
    lines = [
        "",
        f"{cls}::{cls}(::dmxp::Transport &transport)",
        "    : m_transport(transport)",
        "{",
        "}",
        "",
        _signature(mapper, op, cls),
        "{",
    ]

    if op.kind == OP_PUBLISH:
        lines += [
            f"    auto data = {CODEC}::encode(message);",
            "    if (!data.ok())",
            "    {",
            "        return data.status();",
            "    }",
            f"    return m_transport.publish({lit}, *data, {qos});",
        ]
    elif op.kind == OP_SUBSCRIBE:
        lines += [
            f"    return m_transport.subscribe({lit}, {qos},",
            "        [handler](const std::vector<std::uint8_t> &data) -> ::dmxp::Status",
            "        {",
            f"            auto message = {CODEC}::decode<{req}>(data);",
            "            if (!message.ok())",
            "            {",
            "                return message.status();",
            "            }",
            "            handler(*message);",
            "            return ::dmxp::Status::Ok();",
            "        });",
        ]
    elif op.kind == OP_CALL:
        resp = mapper.map_type(op.response).element
        lines += [
            f"    auto data = {CODEC}::encode(request);",
            "    if (!data.ok())",
            "    {",
            "        return data.status();",
            "    }",
            f"    auto reply = m_transport.call({lit}, *data, {qos});",
            "    if (!reply.ok())",
            "    {",
            "        return reply.status();",
            "    }",
            f"    return {CODEC}::decode<{resp}>(*reply);",
        ]
    else:
        lines += [
            f"    return m_transport.serve({lit}, {qos},",
            "        [handler](const std::vector<std::uint8_t> &data)",
            "            -> ::dmxp::Result<std::vector<std::uint8_t>>",
            "        {",
            f"            auto request = {CODEC}::decode<{req}>(data);",
            "            if (!request.ok())",
            "            {",
            "                return request.status();",
            "            }",
            "            auto response = handler(*request);",
            "            if (!response.ok())",
            "            {",
            "                return response.status();",
            "            }",
            f"            return {CODEC}::encode(*response);",
            "        });",
        ]
    lines.append("}")
    return lines


_STD_INCLUDES = ["<cstdint>", "<functional>", "<map>", "<memory>", "<string>", "<vector>"]


class CppBackend(Backend):
    tag = "cpp"
    mapper_class = CppTypeMapper
    default_runtime = "dmxp/dmxp.h"

    def namespaces(self) -> List[str]:
        if self.config.package_name:
            parts = re.split(r"::|\.", self.config.package_name)
        elif self.model.packages and self.model.packages[0]:
            parts = self.model.packages[0].split(".")
        else:
            parts = [default_base_name(self.model)]
        return [self.mapper.escape(sanitize(p)) for p in parts if p]

    def base_name(self) -> str:
        if self.config.package_name:
            return sanitize("_".join(self.namespaces()))
        return default_base_name(self.model)

    def _header(self, head: List[str], includes: List[str], body: List[str]) -> str:
        ns = self.namespaces()
        lines = head + ["", "#pragma once", ""]
        lines += [f"#include {inc}" for inc in _STD_INCLUDES]
        lines.append("")
        lines += [f"#include \"{inc}\"" for inc in includes]
        lines.append("")
        lines += _open_ns(ns) + body + [""] + _close_ns(ns)
        return "\n".join(lines) + "\n"

    def _source(self, head: List[str], header: str, body: List[str]) -> str:
        ns = self.namespaces()
        lines = head + ["", f"#include \"{header}\"", ""]
        lines += _open_ns(ns) + body + [""] + _close_ns(ns)
        return "\n".join(lines) + "\n"

    def render(self) -> List[Tuple[str, str]]:
        base = self.base_name()
        head = header_lines("//", self.tag, self.model)
        m = self.mapper
        types_h = emit_types_h(self.model, m)
        types_cpp = emit_types_cpp(self.model, m)
        chan_h = emit_channels_h(self.model, m)
        chan_cpp = emit_channels_cpp(self.model, m)

        if not self.config.split_files:
            h = f"{base}.dmxp.h"
            return [
                (h, self._header(head, [self.runtime], types_h + chan_h)),
                (f"{base}.dmxp.cpp", self._source(head, h, types_cpp + chan_cpp)),
            ]

        th = f"{base}_types.dmxp.h"
        ch = f"{base}_channels.dmxp.h"
        return [
            (th, self._header(head, [self.runtime], types_h)),
            (f"{base}_types.dmxp.cpp", self._source(head, th, types_cpp)),
            (ch, self._header(head, [self.runtime, th], chan_h)),
            (f"{base}_channels.dmxp.cpp", self._source(head, ch, chan_cpp)),
        ]
