from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List


class StructuralError(ValueError):
    """Raised when the audit document does not have the shape the model requires."""


@dataclass
class Diagnostic:
    level: int
    scope: str
    message: str

    @property
    def level_name(self) -> str:
        return logging.getLevelName(self.level)


@dataclass
class Diagnostics:
    """Accumulates soft failures so a batch run can report everything at once.

    Every record is also forwarded to the logger of the module that produced it.
    """

    records: List[Diagnostic] = field(default_factory=list)

    def add(self, level: int, scope: str, message: str, logger: logging.Logger | None = None) -> None:
        self.records.append(Diagnostic(level, scope, message))
        (logger or logging.getLogger(__name__)).log(level, "%s: %s", scope, message)

    def warning(self, scope: str, message: str, logger: logging.Logger | None = None) -> None:
        self.add(logging.WARNING, scope, message, logger)

    def error(self, scope: str, message: str, logger: logging.Logger | None = None) -> None:
        self.add(logging.ERROR, scope, message, logger)

    def info(self, scope: str, message: str, logger: logging.Logger | None = None) -> None:
        self.add(logging.INFO, scope, message, logger)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.records if d.level >= logging.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.records if d.level == logging.WARNING]

    def for_scope(self, scope: str) -> List[Diagnostic]:
        return [d for d in self.records if d.scope == scope]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)
