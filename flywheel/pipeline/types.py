from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from flywheel.common import ErrorKind


class CycleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class StepStatus(str, Enum):
    OK = "ok"
    NOOP = "noop"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class StepOutcome:
    name: str
    status: StepStatus
    error_kind: ErrorKind | None = None
    error: str | None = None
    result: Any = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.OK

    def to_dict(self, *, include_error: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.error_kind is not None:
            payload["error_kind"] = self.error_kind.value
        if include_error and self.error:
            payload["error"] = self.error
        return payload


@dataclass(slots=True, frozen=True)
class CycleResult:
    kind: str
    status: str
    started_at: str = ""
    finished_at: str = ""
    steps: list[StepOutcome] = field(default_factory=list)

    @classmethod
    def skipped(cls, kind: str) -> "CycleResult":
        return cls(kind=kind, status="skipped")

    @property
    def was_skipped(self) -> bool:
        return self.status == "skipped"

    def step(self, name: str) -> StepOutcome | None:
        for outcome in self.steps:
            if outcome.name == name:
                return outcome
        return None

    def to_dict(self, *, include_errors: bool = True) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "steps": [outcome.to_dict(include_error=include_errors) for outcome in self.steps],
        }
