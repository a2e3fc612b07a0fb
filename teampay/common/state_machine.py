"""Idempotency record transitions enforced by the ledger."""

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"completed", "failed"},
    "completed": set(),
    "failed": {"pending"},
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def sources_for(new: str) -> set[str]:
    """States a record may legally move out of to reach `new`."""

    return {state for state, targets in ALLOWED_TRANSITIONS.items() if new in targets}
