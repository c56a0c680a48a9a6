"""
Run Report - What a reconciliation run decided and what happened.

A report holds the planned mutations, the outcome of each one, and the
diagnostics raised for computers that could not be resolved. It serializes
to JSON for log shipping and to table rows for the CLI.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from directory.base import ComputerObject


def _json_default(obj: Any) -> str:
    """JSON serializer for objects not handled by default json encoder."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class MutationType(Enum):
    """Directory writes a run can issue."""

    CREATE_GROUP = "create_group"
    ADD_MEMBER = "add_member"
    REMOVE_MEMBER = "remove_member"


class Outcome(Enum):
    """What happened to a planned mutation."""

    PLANNED = "planned"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Mutation:
    """A single planned directory write."""

    type: MutationType
    group_name: str
    computer: Optional[ComputerObject] = None
    reason: str = ""

    @property
    def computer_name(self) -> Optional[str]:
        return self.computer.name if self.computer else None

    def describe(self) -> str:
        if self.type is MutationType.CREATE_GROUP:
            return f"create group {self.group_name}"
        if self.type is MutationType.ADD_MEMBER:
            return f"add {self.computer_name} to {self.group_name}"
        return f"remove {self.computer_name} from {self.group_name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "group": self.group_name,
            "computer": self.computer_name,
            "computer_dn": self.computer.distinguished_name if self.computer else None,
            "reason": self.reason,
        }


@dataclass
class MutationResult:
    """Outcome of one mutation."""

    mutation: Mutation
    outcome: Outcome
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.mutation.to_dict()
        data["outcome"] = self.outcome.value
        data["error"] = self.error
        return data


@dataclass(frozen=True)
class Diagnostic:
    """A computer the run could not place in any group."""

    computer_name: str
    operating_system: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "computer": self.computer_name,
            "operating_system": self.operating_system,
            "message": self.message,
        }


@dataclass
class RunReport:
    """Summary of one reconciliation run."""

    mode: str
    container: str
    dry_run: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    computers_evaluated: int = 0
    results: List[MutationResult] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)

    @property
    def mutations(self) -> List[Mutation]:
        return [result.mutation for result in self.results]

    @property
    def applied_count(self) -> int:
        return self._count(Outcome.APPLIED)

    @property
    def failed_count(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def has_failures(self) -> bool:
        return self.error is not None or self.failed_count > 0

    def summary(self) -> str:
        if self.skipped:
            return f"Run skipped: {self.skip_reason}"
        if self.error:
            return f"Run aborted: {self.error}"
        verb = "planned" if self.dry_run else "applied"
        done = len(self.results) if self.dry_run else self.applied_count
        return (
            f"{self.computers_evaluated} computers evaluated, "
            f"{done} mutations {verb}, {self.failed_count} failed, "
            f"{self.skipped_count} skipped, {len(self.diagnostics)} unresolved"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "container": self.container,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "error": self.error,
            "computers_evaluated": self.computers_evaluated,
            "mutations": [result.to_dict() for result in self.results],
            "diagnostics": [diagnostic.to_dict() for diagnostic in self.diagnostics],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=_json_default)

    def table_rows(self) -> List[List[str]]:
        """Rows of ``[action, group, computer, outcome, detail]`` for tabulate."""
        rows = []
        for result in self.results:
            mutation = result.mutation
            rows.append(
                [
                    mutation.type.value,
                    mutation.group_name,
                    mutation.computer_name or "",
                    result.outcome.value,
                    result.error or mutation.reason,
                ]
            )
        for diagnostic in self.diagnostics:
            rows.append(
                [
                    "unresolved",
                    "",
                    diagnostic.computer_name,
                    "reported",
                    diagnostic.message,
                ]
            )
        return rows
