"""
Descriptor graph: index over the FileDescriptorProtos of one request.

Provides lookup of messages / enums by fully-qualified name, source
locations from ``source_code_info``, and the per-file declaration order
used for deterministic channel ordering.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2

from .diagnostics import Location

# Field numbers inside descriptor.proto, used to build source paths.
FILE_MESSAGE_TYPE = 4
FILE_ENUM_TYPE    = 5
FILE_SERVICE      = 6
MESSAGE_FIELD       = 2
MESSAGE_NESTED_TYPE = 3
MESSAGE_ENUM_TYPE   = 4
MESSAGE_OPTIONS     = 7
SERVICE_METHOD  = 2
SERVICE_OPTIONS = 3
METHOD_OPTIONS  = 4

Path = Tuple[int, ...]


@dataclass
class MessageEntry:
    full_name: str
    nested: Tuple[str, ...]    # ("Outer", "Inner")
    package: str
    file: str
    path: Path
    proto: descriptor_pb2.DescriptorProto


@dataclass
class EnumEntry:
    full_name: str
    nested: Tuple[str, ...]
    package: str
    file: str
    path: Path
    proto: descriptor_pb2.EnumDescriptorProto


@dataclass
class ServiceEntry:
    full_name: str
    package: str
    file: str
    path: Path
    proto: descriptor_pb2.ServiceDescriptorProto


def qualify(package: str, *names: str) -> str:
    return ".".join(p for p in (package,) + names if p)


def normalize(type_name: str) -> str:
    """Strip the leading dot protoc puts on fully-qualified type names."""
    return type_name[1:] if type_name.startswith(".") else type_name


class DescriptorGraph:
    """
    Read-only index over a descriptor set.

    ``files`` is every file of the request (imports included) in host order;
    ``generate`` names the subset to generate code for.
    """

    def __init__(self, files: Sequence[descriptor_pb2.FileDescriptorProto],
                 generate: Sequence[str]):
        self.files: Dict[str, descriptor_pb2.FileDescriptorProto] = {}
        self.messages: Dict[str, MessageEntry] = {}
        self.enums: Dict[str, EnumEntry] = {}
        self._decls: Dict[str, List[object]] = {}
        self._spans: Dict[str, Dict[Path, Tuple[int, ...]]] = {}

        for fdp in files:
            self.files[fdp.name] = fdp
            self._index_file(fdp)

        # Host order of file_to_generate.
        self.generate: Tuple[str, ...] = tuple(
            name for name in generate if name in self.files)
        self.missing: Tuple[str, ...] = tuple(
            name for name in generate if name not in self.files)

    # ── Indexing ─────────────────────────────────────────────────────

    def _index_file(self, fdp: descriptor_pb2.FileDescriptorProto):
        spans: Dict[Path, Tuple[int, ...]] = {}
        for loc in fdp.source_code_info.location:
            spans.setdefault(tuple(loc.path), tuple(loc.span))
        self._spans[fdp.name] = spans

        decls: List[object] = []
        for i, msg in enumerate(fdp.message_type):
            self._index_message(fdp, msg, (), (FILE_MESSAGE_TYPE, i), decls)
        for i, enum in enumerate(fdp.enum_type):
            self._index_enum(fdp, enum, (), (FILE_ENUM_TYPE, i))
        for i, svc in enumerate(fdp.service):
            decls.append(ServiceEntry(
                full_name=qualify(fdp.package, svc.name), package=fdp.package,
                file=fdp.name, path=(FILE_SERVICE, i), proto=svc))
        self._decls[fdp.name] = decls

    def _index_message(self, fdp, msg, outer: Tuple[str, ...], path: Path,
                       decls: List[object]):
        nested = outer + (msg.name,)
        entry = MessageEntry(
            full_name=qualify(fdp.package, *nested), nested=nested,
            package=fdp.package, file=fdp.name, path=path, proto=msg)
        self.messages[entry.full_name] = entry
        decls.append(entry)
        for i, sub in enumerate(msg.nested_type):
            self._index_message(fdp, sub, nested,
                                path + (MESSAGE_NESTED_TYPE, i), decls)
        for i, enum in enumerate(msg.enum_type):
            self._index_enum(fdp, enum, nested, path + (MESSAGE_ENUM_TYPE, i))

    def _index_enum(self, fdp, enum, outer: Tuple[str, ...], path: Path):
        nested = outer + (enum.name,)
        entry = EnumEntry(
            full_name=qualify(fdp.package, *nested), nested=nested,
            package=fdp.package, file=fdp.name, path=path, proto=enum)
        self.enums[entry.full_name] = entry

    # ── Queries ──────────────────────────────────────────────────────

    def location(self, file: str, path: Path) -> Location:
        """
        Source location for ``path`` in ``file``.

        Falls back to the longest recorded prefix of the path, so an option
        without its own span reports the declaration that carries it.
        """
        spans = self._spans.get(file, {})
        probe = tuple(path)
        while probe:
            span = spans.get(probe)
            if span:
                return Location(file, span[0] + 1, span[1] + 1)
            probe = probe[:-1]
        return Location(file)

    def declarations(self, file: str) -> Iterator[object]:
        """
        Messages (nested included) and services of ``file`` in source order.

        Source order comes from span start positions; without source info
        messages come first, then services, each in descriptor order.
        """
        spans = self._spans.get(file, {})
        decls = self._decls.get(file, [])

        def key(item):
            seq, entry = item
            span = spans.get(entry.path)
            if span:
                return (0, span[0], span[1], seq)
            return (1, 0, 0, seq)

        for _, entry in sorted(enumerate(decls), key=key):
            yield entry

    def find_message(self, type_name: str) -> Optional[MessageEntry]:
        return self.messages.get(normalize(type_name))

    def find_enum(self, type_name: str) -> Optional[EnumEntry]:
        return self.enums.get(normalize(type_name))

    def package_of(self, file: str) -> str:
        fdp = self.files.get(file)
        return fdp.package if fdp is not None else ""
