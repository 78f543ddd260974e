"""Estados del procesamiento de un evento y su resultado."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..domain.alert import Severity


class EventState(str, Enum):
    RECEIVED = "Received"
    VALIDATED = "Validated"
    EVALUATED = "Evaluated"
    DEDUPLICATED = "Deduplicated"
    GUARD_CHECKED = "GuardChecked"
    DISPATCHED = "Dispatched"
    DONE = "Done"
    REJECTED = "Rejected"
    DROPPED = "Dropped"

    @property
    def is_terminal(self) -> bool:
        return self in (EventState.DONE, EventState.REJECTED, EventState.DROPPED)


@dataclass
class ProcessingOutcome:
    """Resultado de process(): estado terminal más el camino recorrido."""

    device_id: Optional[str]
    path: list[EventState] = field(default_factory=lambda: [EventState.RECEIVED])
    severity: Severity = Severity.NONE
    alert_id: Optional[str] = None
    alert_created: bool = False
    detail: str = ""

    @property
    def state(self) -> EventState:
        return self.path[-1]

    def advance(self, state: EventState, detail: str = "") -> "ProcessingOutcome":
        self.path.append(state)
        if detail:
            self.detail = detail
        return self
