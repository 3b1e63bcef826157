"""
Vocabulary: the dmxp option messages, built at runtime.

The plugin never imports a generated ``options_pb2``. protoc hands over
descriptor options with our extensions stored as unknown fields, so each
host options message (MessageOptions, MethodOptions, ServiceOptions) is
re-parsed into a small "view" message that declares the extension number
as an ordinary field. Everything else in the options message is unknown to
the view and ignored.

Field numbers must match proto/dmxp/options.proto.
"""

from functools import lru_cache
from typing import Optional, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf import unknown_fields
from google.protobuf.message import DecodeError

PACKAGE = "dmxp"

# Extension numbers.
MESSAGE_EXTENSION = 51001
METHOD_EXTENSION  = 51002
SERVICE_EXTENSION = 51003

# Declaration kind -> (view message, view field, extension number).
VIEWS = {
    "message": ("MessageOptionsView", "channel", MESSAGE_EXTENSION),
    "method":  ("MethodOptionsView",  "method",  METHOD_EXTENSION),
    "service": ("ServiceOptionsView", "service", SERVICE_EXTENSION),
}

DIRECTION = ("DIRECTION_UNSPECIFIED", "PUBLISH", "SUBSCRIBE", "CALL")
ORDERING  = ("ORDERING_UNSPECIFIED", "FIFO", "UNORDERED", "LATEST_ONLY")
DELIVERY  = ("DELIVERY_UNSPECIFIED", "AT_MOST_ONCE", "AT_LEAST_ONCE", "EXACTLY_ONCE")

_F = descriptor_pb2.FieldDescriptorProto


class MalformedOption(Exception):
    """An extension payload on our option number is not a ChannelOptions."""
    pass


def _enum(fdp: descriptor_pb2.FileDescriptorProto, name: str, values: Tuple[str, ...]):
    enum = fdp.enum_type.add(name=name)
    for number, value in enumerate(values):
        enum.value.add(name=value, number=number)


def _field(msg: descriptor_pb2.DescriptorProto, name: str, number: int,
           ftype: int, type_name: str = ""):
    f = msg.field.add(name=name, number=number, type=ftype,
                      label=_F.LABEL_OPTIONAL)
    if type_name:
        f.type_name = f".{PACKAGE}.{type_name}"


def build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    """FileDescriptorProto for the option messages plus the three views."""
    fdp = descriptor_pb2.FileDescriptorProto(
        name="dmxp/options_view.proto", package=PACKAGE, syntax="proto3")

    _enum(fdp, "Direction", DIRECTION)
    _enum(fdp, "Ordering", ORDERING)
    _enum(fdp, "Delivery", DELIVERY)

    qos = fdp.message_type.add(name="Qos")
    _field(qos, "ordering",     1, _F.TYPE_ENUM, "Ordering")
    _field(qos, "delivery",     2, _F.TYPE_ENUM, "Delivery")
    _field(qos, "buffer_size",  3, _F.TYPE_UINT32)
    _field(qos, "persistent",   4, _F.TYPE_BOOL)
    _field(qos, "wal_enabled",  5, _F.TYPE_BOOL)
    _field(qos, "swap_enabled", 6, _F.TYPE_BOOL)
    _field(qos, "priority",     7, _F.TYPE_UINT32)
    _field(qos, "timeout_ms",   8, _F.TYPE_UINT32)
    _field(qos, "retry_count",  9, _F.TYPE_UINT32)

    chan = fdp.message_type.add(name="ChannelOptions")
    _field(chan, "name",      1, _F.TYPE_STRING)
    _field(chan, "direction", 2, _F.TYPE_ENUM, "Direction")
    _field(chan, "qos",       3, _F.TYPE_MESSAGE, "Qos")
    _field(chan, "response",  4, _F.TYPE_STRING)

    for view_name, field_name, number in VIEWS.values():
        view = fdp.message_type.add(name=view_name)
        _field(view, field_name, number, _F.TYPE_MESSAGE, "ChannelOptions")

    return fdp


@lru_cache(maxsize=None)
def _pool() -> descriptor_pool.DescriptorPool:
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(build_file_descriptor().SerializeToString())
    return pool


@lru_cache(maxsize=None)
def message_class(name: str):
    """Message class for ``dmxp.<name>`` (e.g. ``ChannelOptions``)."""
    desc = _pool().FindMessageTypeByName(f"{PACKAGE}.{name}")
    return message_factory.GetMessageClass(desc)


def decode(kind: str, options) -> Optional[object]:
    """
    Return the dmxp ``ChannelOptions`` carried by a host options message,
    or None when the declaration has no dmxp option.

    ``kind`` is "message", "method" or "service".

    Raises:
        MalformedOption: If the extension bytes do not parse.
    """
    view_name, field_name, _ = VIEWS[kind]
    try:
        view = message_class(view_name).FromString(options.SerializeToString())
    except DecodeError as e:
        raise MalformedOption(f"malformed dmxp option payload: {e}") from e
    if not view.HasField(field_name):
        return None
    return getattr(view, field_name)


def attach(kind: str, options, channel_options):
    """Store ``channel_options`` on a host options message, as protoc would."""
    view_name, field_name, _ = VIEWS[kind]
    view = message_class(view_name)()
    getattr(view, field_name).CopyFrom(channel_options)
    options.MergeFromString(view.SerializeToString())


def unknown_field_numbers(msg) -> Tuple[int, ...]:
    """Field numbers present on the wire that this vocabulary does not know."""
    return tuple(sorted({f.field_number for f in unknown_fields.UnknownFieldSet(msg)}))


def enum_name(values: Tuple[str, ...], number: int) -> str:
    if 0 <= number < len(values):
        return values[number]
    return str(number)
