"""Shared fixtures for dmxpgen tests: descriptor sets built in code."""

import pytest
import sys
import os

# Add the project root to sys.path so 'tools.dmxpgen' is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2

from tools.dmxpgen import protocol, vocabulary
from tools.dmxpgen.graph import DescriptorGraph

F = descriptor_pb2.FieldDescriptorProto

_TYPES = {
    "double": F.TYPE_DOUBLE, "float": F.TYPE_FLOAT,
    "int32": F.TYPE_INT32, "int64": F.TYPE_INT64,
    "uint32": F.TYPE_UINT32, "uint64": F.TYPE_UINT64,
    "sint32": F.TYPE_SINT32, "sint64": F.TYPE_SINT64,
    "fixed32": F.TYPE_FIXED32, "fixed64": F.TYPE_FIXED64,
    "sfixed32": F.TYPE_SFIXED32, "sfixed64": F.TYPE_SFIXED64,
    "bool": F.TYPE_BOOL, "string": F.TYPE_STRING, "bytes": F.TYPE_BYTES,
    "message": F.TYPE_MESSAGE, "enum": F.TYPE_ENUM,
}

PUBLISH, SUBSCRIBE, CALL = 1, 2, 3


def make_field(name, number, ftype="int32", type_name="", repeated=False):
    f = F(name=name, number=number, type=_TYPES[ftype],
          label=F.LABEL_REPEATED if repeated else F.LABEL_OPTIONAL)
    if type_name:
        f.type_name = type_name
    return f


def make_channel(name="", direction=0, response="", **qos):
    """A dmxp ChannelOptions value, as a schema author would write it."""
    opts = vocabulary.message_class("ChannelOptions")(
        name=name, direction=direction, response=response)
    if qos:
        opts.qos.CopyFrom(vocabulary.message_class("Qos")(**qos))
    return opts


def _varint(value):
    out = bytearray()
    while value > 0x7f:
        out.append(value & 0x7f | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def garble_option(options, number, payload=b"\xff\xff\xff"):
    """Put bytes under field ``number`` of ``options`` that no ChannelOptions parses."""
    options.MergeFromString(_varint(number << 3 | 2) + _varint(len(payload)) + payload)


class Schema:
    """
    One FileDescriptorProto, shaped the way protoc hands it to a plugin.

    Top-level declarations get consecutive source lines unless ``line`` is
    given, so declaration order can be tested independently of descriptor
    order.
    """

    def __init__(self, name="demo/demo.proto", package="demo", syntax="proto3",
                 dependency=("google/protobuf/empty.proto",)):
        self.fdp = descriptor_pb2.FileDescriptorProto(
            name=name, package=package, syntax=syntax, dependency=list(dependency))
        self._next_line = 3

    @property
    def name(self):
        return self.fdp.name

    def _span(self, path, line):
        if line is None:
            line = self._next_line
        self._next_line = max(self._next_line, line) + 4
        loc = self.fdp.source_code_info.location.add()
        loc.path.extend(path)
        loc.span.extend([line - 1, 0, 1])

    def message(self, name, *fields, channel=None, line=None):
        msg = self.fdp.message_type.add(name=name)
        for f in fields:
            msg.field.add().CopyFrom(f)
        if channel is not None:
            vocabulary.attach("message", msg.options, channel)
        self._span((4, len(self.fdp.message_type) - 1), line)
        return msg

    def nested(self, parent, name, *fields, map_entry=False):
        msg = parent.nested_type.add(name=name)
        for f in fields:
            msg.field.add().CopyFrom(f)
        if map_entry:
            msg.options.map_entry = True
        return msg

    def enum(self, name, *values):
        enum = self.fdp.enum_type.add(name=name)
        for number, value in enumerate(values):
            enum.value.add(name=value, number=number)
        return enum

    def service(self, name, channel=None, line=None):
        svc = self.fdp.service.add(name=name)
        if channel is not None:
            vocabulary.attach("service", svc.options, channel)
        self._span((6, len(self.fdp.service) - 1), line)
        return svc

    def method(self, service, name, input_type, output_type, channel=None,
               client_streaming=False, server_streaming=False):
        m = service.method.add(name=name, input_type=input_type,
                               output_type=output_type)
        if client_streaming:
            m.client_streaming = True
        if server_streaming:
            m.server_streaming = True
        if channel is not None:
            vocabulary.attach("method", m.options, channel)
        return m


def empty_proto():
    fdp = descriptor_pb2.FileDescriptorProto(
        name="google/protobuf/empty.proto", package="google.protobuf", syntax="proto3")
    fdp.message_type.add(name="Empty")
    return fdp


def make_request(*schemas, parameter="", generate=None):
    request = plugin_pb2.CodeGeneratorRequest(parameter=parameter)
    request.proto_file.add().CopyFrom(empty_proto())
    for s in schemas:
        request.proto_file.add().CopyFrom(s.fdp)
    names = generate if generate is not None else [s.name for s in schemas]
    request.file_to_generate.extend(names)
    request.compiler_version.major = 25
    request.compiler_version.minor = 1
    return request


def run(*schemas, parameter="", generate=None):
    """Full pipeline over ``schemas``; returns the GenerationResult."""
    request = make_request(*schemas, parameter=parameter, generate=generate)
    return generate_files(request)


def generate_files(request):
    return protocol.generate(request.proto_file, request.file_to_generate,
                             request.parameter)


def ping_schema():
    """Health.Ping: call channel "ping", Empty -> Pong."""
    s = Schema(name="demo/ping.proto", package="demo")
    s.message("Pong",
              make_field("seq", 1, "uint64"),
              make_field("note", 2, "string"))
    svc = s.service("Health")
    s.method(svc, "Ping", ".google.protobuf.Empty", ".demo.Pong",
             channel=make_channel("ping"))
    return s


def telemetry_schema():
    """Three publish/subscribe messages; ``Status`` is missing its name."""
    s = Schema(name="demo/telemetry.proto", package="demo")
    s.enum("Level", "LEVEL_UNSPECIFIED", "LEVEL_LOW", "LEVEL_HIGH")
    s.message("Telemetry",
              make_field("temperature", 1, "double"),
              make_field("level", 2, "enum", ".demo.Level"),
              channel=make_channel("sensors/telemetry", PUBLISH,
                                   ordering=1, buffer_size=64))
    s.message("Status",
              make_field("ok", 1, "bool"),
              channel=make_channel("", PUBLISH))
    s.message("Command",
              make_field("verb", 1, "string"),
              make_field("args", 2, "string", repeated=True),
              channel=make_channel("cmd", SUBSCRIBE))
    return s


@pytest.fixture
def ping():
    return ping_schema()


@pytest.fixture
def telemetry():
    return telemetry_schema()


@pytest.fixture
def schema():
    """Factory for empty schemas."""
    return Schema


@pytest.fixture
def field():
    return make_field


@pytest.fixture
def channel():
    return make_channel


@pytest.fixture
def garble():
    return garble_option


@pytest.fixture
def pipeline():
    return run


@pytest.fixture
def request_for():
    return make_request


def make_graph(*schemas, generate=None):
    files = [empty_proto()] + [s.fdp for s in schemas]
    names = generate if generate is not None else [s.name for s in schemas]
    return DescriptorGraph(files, names)


@pytest.fixture
def graph_of():
    return make_graph
