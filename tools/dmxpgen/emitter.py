"""
Emitter base: the capability every target backend implements, plus the
helpers the per-target emitters share.

A backend is ``{map_type, emit}``: ``map_type`` comes from its TypeMapper,
``emit`` renders the whole IR into an ordered tuple of GeneratedFile.
"""

import posixpath
import re
from dataclasses import dataclass
from typing import List, Tuple, Type

from .config import TargetConfig
from .diagnostics import Diagnostic, DiagnosticSink
from .ir import ChannelDecl, IRModel, OperationDecl, TypeRef
from .types import TargetType, TypeMapper, fnv1a_32


@dataclass(frozen=True)
class GeneratedFile:
    target: str
    path: str
    content: str

    @property
    def data(self) -> bytes:
        return self.content.encode("utf-8")


@dataclass(frozen=True)
class EmitResult:
    files: Tuple[GeneratedFile, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()


class Backend:
    """
    One target language. Subclasses set ``tag``, ``mapper_class`` and
    ``default_runtime`` and implement ``render``.

    Instances are created per emit call; nothing is shared between targets.
    """

    tag = ""
    mapper_class: Type[TypeMapper] = TypeMapper
    default_runtime = ""

    def __init__(self, model: IRModel, config: TargetConfig):
        self.model = model
        self.config = config
        self.sink = DiagnosticSink()
        self.mapper = self.mapper_class(model, config.escape_suffix)

    def map_type(self, ref: TypeRef) -> TargetType:
        return self.mapper.map_type(ref)

    @property
    def runtime(self) -> str:
        return self.config.runtime or self.default_runtime

    def emit(self) -> EmitResult:
        if self.model.empty:
            return EmitResult(diagnostics=self.sink.items)
        files = [GeneratedFile(self.tag, self.output_path(name), content)
                 for name, content in self.render()]
        return EmitResult(files=tuple(files), diagnostics=self.sink.items)

    def render(self) -> List[Tuple[str, str]]:
        """(file name relative to module_path, content) pairs, in output order."""
        raise NotImplementedError

    def output_path(self, name: str) -> str:
        module_dir = self.config.module_path.strip().strip("/")
        if not module_dir:
            return name
        return posixpath.join(module_dir, name)


# ── Shared helpers ───────────────────────────────────────────────────

def header_lines(comment: str, tag: str, model: IRModel) -> List[str]:
    """Banner identifying the generator and the source files."""
    lines = [f"{comment} Auto-generated by dmxpgen ({tag}). DO NOT EDIT."]
    for name in model.files:
        lines.append(f"{comment} source: {name}")
    return lines


def default_base_name(model: IRModel) -> str:
    """Proto package of the first generated file, else the file stem."""
    pkg = model.packages[0] if model.packages else ""
    if not pkg and model.files:
        pkg = posixpath.splitext(posixpath.basename(model.files[0]))[0]
    return sanitize(pkg.replace(".", "_")) or "dmxp"


def sanitize(name: str) -> str:
    """Replace characters that are not identifier-safe with underscores."""
    out = re.sub(r"[^A-Za-z0-9_]", "_", name)
    if out and out[0].isdigit():
        out = "_" + out
    return out


def channel_id(channel: ChannelDecl) -> str:
    return f"0x{fnv1a_32(channel.name):08x}"


def qos_pairs(channel: ChannelDecl) -> List[Tuple[str, str]]:
    """QoS hints as (key, value) strings, in a fixed order."""
    out = []
    for key, value in channel.qos.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        out.append((key, str(value)))
    return out


def operations_by_channel(model: IRModel) -> List[Tuple[ChannelDecl, Tuple[OperationDecl, ...]]]:
    return [(ch, model.operations_for(ch.name)) for ch in model.channels]
