from __future__ import annotations


class BetpoolError(Exception):
    """Base for every error the challenge engine surfaces to callers."""
    kind = "error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PhaseError(BetpoolError):
    kind = "phase"
    status_code = 409
    default_message = "This action is not available in the challenge's current phase"


class NotEligibleError(BetpoolError):
    kind = "not_eligible"
    status_code = 403
    default_message = "Only bettors other than the creator may vote on this challenge"


class NotCreatorError(BetpoolError):
    kind = "not_creator"
    status_code = 403
    default_message = "Only the challenge creator can do this"


class DuplicateBetError(BetpoolError):
    kind = "duplicate_bet"
    status_code = 409
    default_message = "You already have a bet on this challenge"


class InsufficientFundsError(BetpoolError):
    kind = "insufficient_funds"
    status_code = 402
    default_message = "Insufficient credits"


class BelowMinimumError(BetpoolError):
    kind = "below_minimum"
    status_code = 422
    default_message = "Bet is below the challenge minimum"


class InvalidChallengeError(BetpoolError):
    kind = "invalid_challenge"
    status_code = 422
    default_message = "Invalid challenge"


class ChallengeNotFound(BetpoolError):
    kind = "not_found"
    status_code = 404
    default_message = "Challenge not found"


class SettlementPartialFailure(BetpoolError):
    """Some ledger writes failed while distributing a pool. The challenge is still completed."""
    kind = "settlement_partial_failure"
    status_code = 500
    default_message = "Some payouts could not be written and need manual reconciliation"

    def __init__(self, failed_user_ids: list | None = None, message: str | None = None):
        super().__init__(message)
        self.failed_user_ids = list(failed_user_ids or [])


class StoreUnavailable(BetpoolError):
    kind = "store_unavailable"
    status_code = 503
    default_message = "Storage is temporarily unavailable, please retry"
