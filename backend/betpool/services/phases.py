from __future__ import annotations
from datetime import datetime, timedelta
from typing import Literal

Phase = Literal["betting", "proof_window", "voting", "voting_closed", "expired", "completed"]

# Phases whose exit is driven by the clock rather than by a user action
RECONCILE_PHASES: frozenset[str] = frozenset({"voting_closed", "expired"})


def proof_deadline(deadline: datetime, proof_submission_hours: float) -> datetime:
    """Last instant (exclusive) at which the creator may still submit proof."""
    return deadline + timedelta(hours=proof_submission_hours)


def voting_deadline(proof_submitted_at: datetime, voting_duration_hours: float) -> datetime:
    return proof_submitted_at + timedelta(hours=voting_duration_hours)


def challenge_phase(ch, now: datetime, proof_submission_hours: float) -> Phase:
    """
    Derive the lifecycle phase of a challenge from its stored status and the clock.

    Only active/voting/completed are stored; the proof window and expiry are
    derived here so they can never disagree with wall-clock time. Every caller
    (bet placement, proof, voting, the public view and the sweeper) goes
    through this function.

    Args:
        ch: anything with status, deadline, proof_submitted_at and voting_ends_at
        now: aware UTC instant
        proof_submission_hours: length of the post-deadline proof window

    Examples:
        >>> challenge_phase(ch, ch.deadline - timedelta(minutes=1), 3)
        'betting'
        >>> challenge_phase(ch, ch.deadline, 3)
        'proof_window'
        >>> challenge_phase(ch, ch.deadline + timedelta(hours=3), 3)
        'expired'
    """
    if ch.status == "completed":
        return "completed"
    if ch.status == "voting" or ch.proof_submitted_at is not None:
        if ch.voting_ends_at is not None and now >= ch.voting_ends_at:
            return "voting_closed"
        return "voting"
    if now < ch.deadline:
        return "betting"
    if now < proof_deadline(ch.deadline, proof_submission_hours):
        return "proof_window"
    return "expired"


def needs_reconcile(ch, now: datetime, proof_submission_hours: float) -> bool:
    return challenge_phase(ch, now, proof_submission_hours) in RECONCILE_PHASES
