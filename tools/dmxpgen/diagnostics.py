"""
Diagnostics: validation and generation problems collected as data.

Every component reports recoverable problems into a ``DiagnosticSink``
instead of raising; the host adapter batches them into one response.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

ERROR   = "error"
WARNING = "warning"


@dataclass(frozen=True)
class Location:
    file: str = ""
    line: int = 0     # 1-based, 0 when unknown
    column: int = 0   # 1-based, 0 when unknown

    def __str__(self) -> str:
        if not self.file:
            return "<unknown>"
        if not self.line:
            return self.file
        if not self.column:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    message: str
    location: Location = Location()
    related: Tuple[Location, ...] = ()

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    def __str__(self) -> str:
        prefix = f"{self.location}: " if self.location.file else ""
        return f"{prefix}{self.severity}: {self.message}"


class DiagnosticSink:
    """Ordered collector of diagnostics for one generation request."""

    def __init__(self):
        self._items: List[Diagnostic] = []

    def error(self, message: str, location: Optional[Location] = None,
              related: Iterable[Location] = ()) -> Diagnostic:
        return self.add(Diagnostic(ERROR, message, location or Location(),
                                   tuple(related)))

    def warning(self, message: str, location: Optional[Location] = None,
                related: Iterable[Location] = ()) -> Diagnostic:
        return self.add(Diagnostic(WARNING, message, location or Location(),
                                   tuple(related)))

    def add(self, diag: Diagnostic) -> Diagnostic:
        self._items.append(diag)
        return diag

    def extend(self, diags: Iterable[Diagnostic]):
        self._items.extend(diags)

    @property
    def items(self) -> Tuple[Diagnostic, ...]:
        return tuple(self._items)

    @property
    def errors(self) -> Tuple[Diagnostic, ...]:
        return tuple(d for d in self._items if d.is_error)

    @property
    def warnings(self) -> Tuple[Diagnostic, ...]:
        return tuple(d for d in self._items if not d.is_error)

    def has_errors(self) -> bool:
        return any(d.is_error for d in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)
