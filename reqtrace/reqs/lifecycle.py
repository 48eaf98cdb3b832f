"""Requirement status lifecycle using the transitions library.

The status field (draft, approved, implemented, released) is driven through
a state machine so that every change goes through one callback, which
writes the status_changed history entry and logs the transition.

Usage:
    from reqtrace.reqs.lifecycle import RequirementLifecycle

    lifecycle = RequirementLifecycle("REQ-001", requirement)
    lifecycle.move_to("approved", by="alice")
"""

import logging
from datetime import datetime

from transitions import Machine

from reqtrace.lib.constants import DEFAULT_STATUS, STATUSES
from reqtrace.lib.errors import ValidationError
from reqtrace.reqs.history import create_history_entry
from reqtrace.reqs.models import Requirement

logger = logging.getLogger(__name__)


STATES = list(STATUSES)

# Statuses are labels, not a gated workflow: any status can follow any other.
# One trigger per destination, e.g. mark_approved.
TRANSITIONS = [
    {"trigger": f"mark_{dest}", "source": [s for s in STATES if s != dest], "dest": dest}
    for dest in STATES
]


class RequirementLifecycle:
    """State machine over one requirement's status.

    Mutates the requirement it wraps: status and history are updated by the
    after_state_change callback.
    """

    def __init__(self, req_id: str, requirement: Requirement):
        self.req_id = req_id
        self.requirement = requirement

        initial = requirement.status
        if initial not in STATES:
            logger.warning(f"[STATE] {req_id}: Unknown status '{initial}', treating as '{DEFAULT_STATUS}'")
            initial = DEFAULT_STATUS

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Record the transition on the requirement."""
        from_state = event.transition.source
        to_state = event.transition.dest
        by = event.kwargs.get("by")
        now: datetime | None = event.kwargs.get("now")

        logger.info(f"[STATE] {self.req_id}: {from_state} -> {to_state}")

        self.requirement.status = to_state
        self.requirement.history.append(
            create_history_entry("status_changed", f"{from_state} -> {to_state}", by, now)
        )

    def move_to(self, status: str, by: str | None = None, now: datetime | None = None) -> bool:
        """Move to status. Returns False if already there (no history written).

        Raises:
            ValidationError: If status is not a known status
        """
        if status not in STATES:
            raise ValidationError(f"Invalid status: {status}. Valid statuses: {', '.join(STATES)}")

        if self.requirement.status == status:
            return False

        getattr(self, f"mark_{status}")(by=by, now=now)
        return True
