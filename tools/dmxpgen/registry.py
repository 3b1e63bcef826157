"""
Backend registry: target tag -> backend class, and the step that runs the
requested backends over one IR model.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple, Type

from .config import GeneratorParams, TargetConfig, resolve_targets
from .cpp_emitter import CppBackend
from .diagnostics import DiagnosticSink
from .emitter import Backend, EmitResult, GeneratedFile
from .go_emitter import GoBackend
from .ir import IRModel
from .log import get_logger
from .python_emitter import PythonBackend
from .rust_emitter import RustBackend

logger = get_logger(__name__)

DEFAULT_BACKENDS = (CppBackend, GoBackend, PythonBackend, RustBackend)


class BackendRegistry:
    """
    Maps target tags to backend classes.

    Build one per request with ``BackendRegistry.default()``; registering
    on it never affects other requests.
    """

    def __init__(self):
        self._backends: Dict[str, Type[Backend]] = {}

    @classmethod
    def default(cls) -> "BackendRegistry":
        registry = cls()
        for backend in DEFAULT_BACKENDS:
            registry.register(backend)
        return registry

    def register(self, backend: Type[Backend]):
        if not backend.tag:
            raise ValueError(f"backend {backend.__name__} has no tag")
        self._backends[backend.tag] = backend

    def get(self, tag: str) -> Optional[Type[Backend]]:
        return self._backends.get(tag)

    @property
    def tags(self) -> Tuple[str, ...]:
        return tuple(sorted(self._backends))

    def __contains__(self, tag: str) -> bool:
        return tag in self._backends


def _emit_one(backend: Type[Backend], model: IRModel, config: TargetConfig) -> EmitResult:
    logger.debug("emitting %s", backend.tag)
    return backend(model, config).emit()


def run_backends(model: IRModel, params: GeneratorParams, registry: BackendRegistry,
                 sink: DiagnosticSink) -> List[GeneratedFile]:
    """
    Run every requested backend and merge their output in request order.

    Unknown targets, backend failures and output path clashes are reported
    to ``sink``; the remaining targets still produce their files.
    """
    jobs: List[Tuple[str, Type[Backend]]] = []
    for tag in resolve_targets(params, registry.tags):
        backend = registry.get(tag)
        if backend is None:
            sink.error(f"unknown target {tag!r} (available: {', '.join(registry.tags)})")
            continue
        jobs.append((tag, backend))

    if not jobs:
        return []

    results: List[Optional[EmitResult]] = []
    if params.parallel and len(jobs) > 1:
        with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            futures = [pool.submit(_emit_one, backend, model, params.config_for(tag))
                       for tag, backend in jobs]
            for (tag, _), future in zip(jobs, futures):
                results.append(_collect(tag, future.result, sink))
    else:
        for tag, backend in jobs:
            results.append(_collect(
                tag, lambda: _emit_one(backend, model, params.config_for(tag)), sink))

    files: List[GeneratedFile] = []
    owners: Dict[str, str] = {}
    for result in results:
        if result is None:
            continue
        sink.extend(result.diagnostics)
        for f in result.files:
            if f.path in owners:
                sink.error(f"{f.target}: output file {f.path!r} is already "
                           f"generated by target {owners[f.path]!r}; dropped")
                continue
            owners[f.path] = f.target
            files.append(f)

    logger.info("generated %d file(s) for %d target(s)", len(files), len(jobs))
    return files


def _collect(tag: str, get_result, sink: DiagnosticSink) -> Optional[EmitResult]:
    try:
        return get_result()
    except Exception as e:
        logger.exception("backend %s failed", tag)
        sink.error(f"{tag}: code generation failed: {e}")
        return None
