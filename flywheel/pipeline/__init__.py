from .events import EventBroadcaster, format_sse
from .orchestrator import FORCE_SYNC, FULL_CYCLE, CycleOrchestrator
from .trace import CycleTrace, TraceStep
from .types import CycleResult, CycleState, StepOutcome, StepStatus

__all__ = [
    "CycleOrchestrator",
    "CycleResult",
    "CycleState",
    "CycleTrace",
    "EventBroadcaster",
    "FORCE_SYNC",
    "FULL_CYCLE",
    "StepOutcome",
    "StepStatus",
    "TraceStep",
    "format_sse",
]
