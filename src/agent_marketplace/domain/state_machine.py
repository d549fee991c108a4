"""Listing and Transaction State Machine Guards.

Uses python-statemachine to enforce legal status transitions at the domain
level. Both the HTTP routes and the chain indexer go through the services,
and the services go through these guards, so the two entry points share one
transition table.

The machines are instantiated per check and validate a transition before the
ORM model's status field is updated.

Listing transitions:
    active   -> pending    (request_purchase)
    pending  -> sold       (complete_sale)
    active   -> cancelled  (cancel_listing)
    pending  -> active     (revert_to_active)

Transaction transitions:
    requested -> confirmed  (confirm_purchase)
    confirmed -> completed  (release_funds)
    requested -> cancelled  (cancel_purchase)
    confirmed -> disputed   (raise_dispute)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class _StatusGuard(StateMachine):
    """Shared constructor/helpers for the status guards."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]

    def event_towards(self, target_status: str) -> str | None:
        """Return the event that moves the machine to `target_status`, if any."""
        for event_name in self.get_allowed_events():
            if validate_transition(type(self), self.status, event_name) == target_status:
                return event_name
        return None


class ListingStateMachine(_StatusGuard):
    """Guards the listing lifecycle.

    Usage:
        sm = ListingStateMachine("active")
        sm.request_purchase()  # transitions to pending
        sm.status              # "pending"
    """

    active = State("Active", value="active", initial=True)
    pending = State("Pending", value="pending")
    sold = State("Sold", value="sold", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    request_purchase = active.to(pending)
    complete_sale = pending.to(sold)
    cancel_listing = active.to(cancelled)
    revert_to_active = pending.to(active)


class TransactionStateMachine(_StatusGuard):
    """Guards the purchase (transaction) lifecycle."""

    requested = State("Requested", value="requested", initial=True)
    confirmed = State("Confirmed", value="confirmed")
    completed = State("Completed", value="completed", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)
    disputed = State("Disputed", value="disputed", final=True)

    confirm_purchase = requested.to(confirmed)
    release_funds = confirmed.to(completed)
    cancel_purchase = requested.to(cancelled)
    raise_dispute = confirmed.to(disputed)


def validate_transition(
    machine_cls: type[_StatusGuard],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
