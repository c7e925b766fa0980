from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from flywheel.common import log_event
from flywheel.storage import now_ms


@dataclass(slots=True, frozen=True)
class TraceStep:
    t: int
    name: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"t": self.t, "name": self.name, "data": self.data}


@dataclass(slots=True)
class CycleTrace:
    kind: str
    started_at: int = field(default_factory=now_ms)
    steps: list[TraceStep] = field(default_factory=list)
    logger: logging.Logger | None = None

    def step(self, name: str, **data: Any) -> TraceStep:
        entry = TraceStep(t=now_ms(), name=name, data=data or None)
        self.steps.append(entry)
        if self.logger is not None:
            log_event(
                self.logger,
                level="info",
                event="cycle_step",
                message=f"Cycle step {name}",
                cycle_kind=self.kind,
                step=name,
                **data,
            )
        return entry

    def names(self) -> list[str]:
        return [entry.name for entry in self.steps]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "started_at": self.started_at,
            "steps": [entry.to_dict() for entry in self.steps],
        }
