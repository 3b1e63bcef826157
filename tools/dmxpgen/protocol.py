"""
Host protocol adapter: protoc plugin request in, plugin response out.

One exchange runs the whole pipeline::

    CodeGeneratorRequest
      -> parse parameters -> DescriptorGraph -> extract_options
      -> build_ir -> run_backends
      -> CodeGeneratorResponse

Only a request that cannot be decoded fails the exchange; every other
problem travels back as diagnostics.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2
from google.protobuf.message import DecodeError as ProtobufDecodeError

from . import log
from .builder import build_ir
from .config import parse_parameters
from .diagnostics import Diagnostic, DiagnosticSink
from .emitter import GeneratedFile
from .graph import DescriptorGraph
from .options import extract_options
from .registry import BackendRegistry, run_backends

logger = log.get_logger(__name__)

IDLE = "idle"
PROCESSING = "processing"


class DecodeError(Exception):
    """The request envelope is not a valid serialized message."""
    pass


@dataclass(frozen=True)
class GenerationResult:
    files: Tuple[GeneratedFile, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def errors(self) -> Tuple[Diagnostic, ...]:
        return tuple(d for d in self.diagnostics if d.is_error)

    @property
    def warnings(self) -> Tuple[Diagnostic, ...]:
        return tuple(d for d in self.diagnostics if not d.is_error)

    @property
    def ok(self) -> bool:
        return not self.errors


def generate(proto_files: Sequence[descriptor_pb2.FileDescriptorProto],
             file_to_generate: Sequence[str], parameter: str = "",
             registry: Optional[BackendRegistry] = None) -> GenerationResult:
    """Run extraction, IR building and every requested backend."""
    sink = DiagnosticSink()
    params = parse_parameters(parameter, sink)
    if params.log_level:
        log.set_level(params.log_level)

    graph = DescriptorGraph(proto_files, file_to_generate)
    records = extract_options(graph, sink)
    model = build_ir(graph, records, sink)
    if registry is None:
        registry = BackendRegistry.default()
    files = run_backends(model, params, registry, sink)
    return GenerationResult(files=tuple(files), diagnostics=sink.items)


def decode_request(data: bytes) -> plugin_pb2.CodeGeneratorRequest:
    """
    Raises:
        DecodeError: If ``data`` is not a CodeGeneratorRequest.
    """
    request = plugin_pb2.CodeGeneratorRequest()
    try:
        request.ParseFromString(data)
    except ProtobufDecodeError as e:
        raise DecodeError(f"cannot decode CodeGeneratorRequest: {e}") from e
    return request


def encode_response(result: GenerationResult) -> plugin_pb2.CodeGeneratorResponse:
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL
    for f in result.files:
        response.file.add(name=f.path, content=f.content)
    if result.errors:
        response.error = "\n".join(str(d) for d in result.errors)
    return response


class HostAdapter:
    """
    Serves one plugin exchange at a time.

    ``state`` is IDLE between requests and PROCESSING while one runs; the
    result of the last exchange stays available as ``last_result``.
    """

    def __init__(self, registry: Optional[BackendRegistry] = None):
        self.registry = registry
        self.state = IDLE
        self.last_result: Optional[GenerationResult] = None

    def handle(self, data: bytes) -> bytes:
        """
        Serialized CodeGeneratorRequest in, serialized response out.

        Raises:
            DecodeError: If the request cannot be decoded.
        """
        if self.state != IDLE:
            raise RuntimeError("a request is already being processed")
        self.state = PROCESSING
        try:
            request = decode_request(data)
            if request.HasField("compiler_version"):
                v = request.compiler_version
                logger.debug("protoc %d.%d.%d%s", v.major, v.minor, v.patch,
                             f"-{v.suffix}" if v.suffix else "")
            logger.debug("files to generate: %s", ", ".join(request.file_to_generate))
            self.last_result = generate(request.proto_file, request.file_to_generate,
                                        request.parameter, self.registry)
            return encode_response(self.last_result).SerializeToString()
        finally:
            self.state = IDLE


# ── Descriptor set mode ──────────────────────────────────────────────

def decode_descriptor_set(data: bytes) -> descriptor_pb2.FileDescriptorSet:
    """
    Raises:
        DecodeError: If ``data`` is not a FileDescriptorSet.
    """
    fds = descriptor_pb2.FileDescriptorSet()
    try:
        fds.ParseFromString(data)
    except ProtobufDecodeError as e:
        raise DecodeError(f"cannot decode FileDescriptorSet: {e}") from e
    return fds


def root_files(files: Iterable[descriptor_pb2.FileDescriptorProto]) -> List[str]:
    """Files of the set that no other file of the set imports, in set order."""
    files = list(files)
    imported = {dep for fdp in files for dep in fdp.dependency}
    return [fdp.name for fdp in files if fdp.name not in imported]


def generate_from_descriptor_set(data: bytes, parameter: str = "",
                                 files: Sequence[str] = ()) -> GenerationResult:
    """
    Run the pipeline over a serialized FileDescriptorSet, as written by
    ``protoc --include_imports --include_source_info --descriptor_set_out``.

    Raises:
        DecodeError: If ``data`` is not a FileDescriptorSet.
    """
    fds = decode_descriptor_set(data)
    to_generate = list(files) or root_files(fds.file)
    return generate(fds.file, to_generate, parameter)
