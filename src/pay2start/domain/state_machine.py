"""Contract lifecycle state machine guard.

Uses python-statemachine to enforce legal status transitions at the domain
level. Services instantiate it per contract and fire the event before writing
the new status to the database.

Transition table:
    draft      -> ready       (mark_ready)
    draft      -> sent        (send_for_signature)
    ready      -> sent        (send_for_signature)
    sent       -> sent        (send_for_signature, re-issued link)
    draft      -> signed      (client_signs)
    ready      -> signed      (client_signs)
    sent       -> signed      (client_signs)
    signed     -> paid        (payment_received)
    signed     -> completed   (complete)
    paid       -> completed   (complete)
    any but completed/cancelled -> cancelled (void)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class ContractStateMachine(StateMachine):
    """State machine that guards contract lifecycle transitions.

    Usage:
        sm = ContractStateMachine(current_status="sent")
        sm.client_signs()
        sm.status  # "signed"
    """

    # --- States ---
    DRAFT = State("Draft", value="draft", initial=True)
    READY = State("Ready", value="ready")
    SENT = State("Sent", value="sent")
    SIGNED = State("Signed", value="signed")
    PAID = State("Paid", value="paid")
    COMPLETED = State("Completed", value="completed", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---
    mark_ready = DRAFT.to(READY)
    send_for_signature = DRAFT.to(SENT) | READY.to(SENT) | SENT.to.itself()
    client_signs = DRAFT.to(SIGNED) | READY.to(SIGNED) | SENT.to(SIGNED)
    payment_received = SIGNED.to(PAID)
    complete = SIGNED.to(COMPLETED) | PAID.to(COMPLETED)
    void = (
        DRAFT.to(CANCELLED)
        | READY.to(CANCELLED)
        | SENT.to(CANCELLED)
        | SIGNED.to(CANCELLED)
        | PAID.to(CANCELLED)
    )

    def __init__(self, current_status: str = "draft") -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches ContractStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Fire the named event on a throwaway machine and return the new status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = ContractStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
