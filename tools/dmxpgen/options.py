"""
Option extractor: decodes dmxp channel options into typed records.

Walks every message, service and rpc method of the files to generate,
decodes the ``(dmxp.channel)``, ``(dmxp.method)`` and ``(dmxp.service)``
options and validates them. Extraction is exhaustive: a broken declaration
is reported to the sink and skipped, its siblings are still processed.
"""

import re
from dataclasses import dataclass
from typing import ClassVar, Dict, List, Optional, Union

from . import vocabulary
from .diagnostics import DiagnosticSink, Location
from .graph import (
    DescriptorGraph, MessageEntry, ServiceEntry, normalize,
    MESSAGE_OPTIONS, SERVICE_METHOD, SERVICE_OPTIONS, METHOD_OPTIONS,
)
from .ir import CALL, PUBLISH, SUBSCRIBE, Qos
from .log import get_logger

logger = get_logger(__name__)

# Channel names end up in string literals of every target and in
# shared-memory segment names.
CHANNEL_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-/:]*$")

EMPTY_TYPE = "google.protobuf.Empty"

_DIRECTIONS = {1: PUBLISH, 2: SUBSCRIBE, 3: CALL}


@dataclass(frozen=True)
class ChannelOption:
    """Fields shared by every option record."""
    direction: ClassVar[str] = ""

    name: str
    message_type: str      # payload, or request for calls
    qos: Qos
    location: Location
    file: str
    origin: str            # "message", "method" or "service"
    declared_by: str       # fully-qualified declaration name
    op_name: str           # PascalCase base name for generated operations


@dataclass(frozen=True)
class PublishOption(ChannelOption):
    direction: ClassVar[str] = PUBLISH


@dataclass(frozen=True)
class SubscribeOption(ChannelOption):
    direction: ClassVar[str] = SUBSCRIBE


@dataclass(frozen=True)
class CallOption(ChannelOption):
    direction: ClassVar[str] = CALL

    response_type: str = ""


AnyOption = Union[PublishOption, SubscribeOption, CallOption]


def extract_options(graph: DescriptorGraph, sink: DiagnosticSink) -> List[AnyOption]:
    """
    Decode and validate every dmxp option in the files to generate.

    Returns the valid records in declaration order (host file order, then
    source order). Problems are reported to ``sink``.
    """
    for name in graph.missing:
        sink.error(f"file to generate {name!r} is not in the request", Location(name))

    records: List[AnyOption] = []
    seen: Dict[str, AnyOption] = {}

    for file in graph.generate:
        for decl in graph.declarations(file):
            if isinstance(decl, MessageEntry):
                found = [_from_message(graph, decl, sink)]
            else:
                found = _from_service(graph, decl, sink)

            for rec in found:
                if rec is None:
                    continue
                first = seen.get(rec.name)
                if first is not None:
                    sink.error(
                        f"duplicate channel name {rec.name!r}: declared by "
                        f"{first.declared_by} at {first.location} and by "
                        f"{rec.declared_by} at {rec.location}",
                        rec.location, related=(first.location,))
                    continue
                seen[rec.name] = rec
                records.append(rec)

    logger.debug("extracted %d channel option(s)", len(records))
    return records


# ── Messages ─────────────────────────────────────────────────────────

def _from_message(graph: DescriptorGraph, entry: MessageEntry,
                  sink: DiagnosticSink) -> Optional[AnyOption]:
    what = f"message {entry.full_name}"
    loc = graph.location(
        entry.file, entry.path + (MESSAGE_OPTIONS, vocabulary.MESSAGE_EXTENSION))
    opts = _decode("message", entry.proto.options, what, loc, sink)
    if opts is None:
        return None
    _warn_unknown(opts, what, loc, sink)

    ok = _check_name(opts.name, what, loc, sink)

    direction = _DIRECTIONS.get(opts.direction)
    if opts.direction == 0:
        sink.error(f"{what}: dmxp channel option has no direction", loc)
        ok = False
    elif direction is None:
        sink.error(f"{what}: unknown channel direction {opts.direction}", loc)
        ok = False

    response = normalize(opts.response.strip())
    if direction == CALL and not response:
        sink.error(f"{what}: call channel {opts.name!r} has no response type", loc)
        ok = False
    elif direction in (PUBLISH, SUBSCRIBE) and response:
        sink.warning(
            f"{what}: response type {response!r} ignored for "
            f"{direction} channel {opts.name!r}", loc)

    qos = _qos(opts, what, loc, sink)
    if not ok:
        return None

    return _record(direction, name=opts.name, message_type=entry.full_name,
                   response_type=response, qos=qos, location=loc,
                   file=entry.file, origin="message",
                   declared_by=entry.full_name, op_name="".join(entry.nested))


# ── Services / methods ───────────────────────────────────────────────

def _from_service(graph: DescriptorGraph, entry: ServiceEntry,
                  sink: DiagnosticSink) -> List[Optional[AnyOption]]:
    svc = entry.proto
    svc_loc = graph.location(
        entry.file, entry.path + (SERVICE_OPTIONS, vocabulary.SERVICE_EXTENSION))
    what = f"service {entry.full_name}"
    svc_opts = _decode("service", svc.options, what, svc_loc, sink)
    svc_ok = False
    if svc_opts is not None:
        _warn_unknown(svc_opts, what, svc_loc, sink)
        svc_ok = _check_name(svc_opts.name, what, svc_loc, sink)
        if svc_opts.direction and svc_opts.direction not in _DIRECTIONS:
            sink.error(f"{what}: unknown channel direction {svc_opts.direction}", svc_loc)
            svc_ok = False
        svc_qos = _qos(svc_opts, what, svc_loc, sink)

    out: List[Optional[AnyOption]] = []
    for j, method in enumerate(svc.method):
        full_name = f"{entry.full_name}.{method.name}"
        what = f"method {full_name}"
        mpath = entry.path + (SERVICE_METHOD, j)
        loc = graph.location(
            entry.file, mpath + (METHOD_OPTIONS, vocabulary.METHOD_EXTENSION))
        try:
            m_opts = vocabulary.decode("method", method.options)
        except vocabulary.MalformedOption as e:
            sink.error(f"{what}: {e}", loc)
            continue

        if m_opts is not None and svc_opts is not None:
            sink.error(
                f"{what}: both (dmxp.method) and service-level (dmxp.service) "
                f"options apply; declare the channel in one place only",
                loc, related=(svc_loc,))
            continue

        if m_opts is not None:
            _warn_unknown(m_opts, what, loc, sink)
            if not _check_name(m_opts.name, what, loc, sink):
                continue
            name, raw_direction, origin = m_opts.name, m_opts.direction, "method"
            qos = _qos(m_opts, what, loc, sink)
            if m_opts.response:
                sink.warning(f"{what}: 'response' is ignored on methods, "
                             f"the rpc output type is used", loc)
        elif svc_opts is not None and svc_ok:
            name = f"{svc_opts.name}.{method.name}"
            raw_direction, origin, qos = svc_opts.direction, "service", svc_qos
            loc = graph.location(entry.file, mpath)
        else:
            continue

        direction = _DIRECTIONS.get(raw_direction or 3)
        if direction is None:
            sink.error(f"{what}: unknown channel direction {raw_direction}", loc)
            continue

        if method.client_streaming or method.server_streaming:
            sink.error(f"{what}: streaming methods cannot be bound to dmxp "
                       f"channels", loc)
            continue

        request = normalize(method.input_type)
        response = normalize(method.output_type)
        if not request:
            sink.error(f"{what}: channel {name!r} has no request type", loc)
            continue
        if direction == CALL and not response:
            sink.error(f"{what}: call channel {name!r} has no response type", loc)
            continue
        if direction != CALL and response and response != EMPTY_TYPE:
            sink.warning(
                f"{what}: response type {response!r} ignored for "
                f"{direction} channel {name!r}", loc)

        out.append(_record(direction, name=name, message_type=request,
                           response_type=response, qos=qos, location=loc,
                           file=entry.file, origin=origin,
                           declared_by=full_name, op_name=method.name))
    return out


# ── Helpers ──────────────────────────────────────────────────────────

def _decode(kind: str, options, what: str, loc: Location, sink: DiagnosticSink):
    """Decoded option, or None when absent or malformed (reported)."""
    try:
        return vocabulary.decode(kind, options)
    except vocabulary.MalformedOption as e:
        sink.error(f"{what}: {e}", loc)
        return None


def _record(direction: str, response_type: str, **kwargs) -> AnyOption:
    if direction == PUBLISH:
        return PublishOption(**kwargs)
    if direction == SUBSCRIBE:
        return SubscribeOption(**kwargs)
    return CallOption(response_type=response_type, **kwargs)


def _check_name(name: str, what: str, loc: Location, sink: DiagnosticSink) -> bool:
    if not name:
        sink.error(f"{what}: dmxp channel option has no name", loc)
        return False
    if not CHANNEL_NAME_RE.match(name):
        sink.error(f"{what}: invalid channel name {name!r} (allowed: letters, "
                   f"digits and _ . - / :)", loc)
        return False
    return True


def _qos(opts, what: str, loc: Location, sink: DiagnosticSink) -> Qos:
    if not opts.HasField("qos"):
        return Qos()
    q = opts.qos
    _warn_unknown(q, f"{what} qos", loc, sink)

    ordering = ""
    if q.ordering:
        ordering = vocabulary.enum_name(vocabulary.ORDERING, q.ordering)
        if ordering.isdigit():
            sink.warning(f"{what}: unknown qos ordering {q.ordering} ignored", loc)
            ordering = ""
    delivery = ""
    if q.delivery:
        delivery = vocabulary.enum_name(vocabulary.DELIVERY, q.delivery)
        if delivery.isdigit():
            sink.warning(f"{what}: unknown qos delivery {q.delivery} ignored", loc)
            delivery = ""

    return Qos(
        ordering=ordering.lower(),
        delivery=delivery.lower(),
        buffer_size=q.buffer_size,
        persistent=q.persistent,
        wal_enabled=q.wal_enabled,
        swap_enabled=q.swap_enabled,
        priority=q.priority,
        timeout_ms=q.timeout_ms,
        retry_count=q.retry_count,
    )


def _warn_unknown(msg, what: str, loc: Location, sink: DiagnosticSink):
    for number in vocabulary.unknown_field_numbers(msg):
        sink.warning(f"{what}: unrecognized dmxp option field {number} ignored", loc)
