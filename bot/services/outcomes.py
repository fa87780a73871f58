from __future__ import annotations

from dataclasses import dataclass

from database.models import ModmailRecord

OUTCOME_OK = "ok"
OUTCOME_ALREADY_CLAIMED = "already_claimed"
OUTCOME_NOT_CLAIMED = "not_claimed"
OUTCOME_ALREADY_RESOLVED = "already_resolved"
OUTCOME_ALREADY_OPEN = "already_open"
OUTCOME_ALREADY_CLOSED = "already_closed"
OUTCOME_VETOED = "vetoed"


@dataclass(slots=True)
class LifecycleOutcome:
    """Result of a lifecycle transition.

    Conflicts such as a lost claim race are ordinary outcomes, not errors;
    ``claimed_by`` names the winner in that case.
    """

    status: str
    message: str | None = None
    ticket: ModmailRecord | None = None
    claimed_by: int | None = None
    dm_failed: bool = False

    @property
    def changed(self) -> bool:
        return self.status == OUTCOME_OK
