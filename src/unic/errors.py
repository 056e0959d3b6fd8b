"""Engine error taxonomy.

Precondition errors are surfaced to the caller with no state mutation.
Invariant violations are rejected before any mutation. Transient errors
are captured on distribution records and retried up to the attempt ceiling.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""


# --- Preconditions ---


class PreconditionError(EngineError):
    """Caller-side condition not met. Not retried automatically."""


class ContestNotFound(PreconditionError):
    def __init__(self, contest_id: int) -> None:
        super().__init__(f"Contest {contest_id} not found")
        self.contest_id = contest_id


class ContestNotAcceptingActivity(PreconditionError):
    def __init__(self, contest_id: int) -> None:
        super().__init__(f"Contest {contest_id} is not accepting activity")
        self.contest_id = contest_id


class BoostAlreadyActive(PreconditionError):
    def __init__(self, participant_id: int, contest_id: int) -> None:
        super().__init__(f"Participant {participant_id} already has an active boost in contest {contest_id}")
        self.participant_id = participant_id
        self.contest_id = contest_id


class BoostsDisabled(PreconditionError):
    def __init__(self, contest_id: int) -> None:
        super().__init__(f"Boosts are disabled for contest {contest_id}")
        self.contest_id = contest_id


class InvalidTransition(PreconditionError, ValueError):
    def __init__(self, current_status: str, target_status: str, valid: list[str]) -> None:
        super().__init__(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )
        self.current_status = current_status
        self.target_status = target_status


class MissingWalletAddress(PreconditionError):
    def __init__(self, participant_id: int) -> None:
        super().__init__(f"No wallet address on file for participant {participant_id}")
        self.participant_id = participant_id


class InvalidWalletAddress(PreconditionError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Malformed wallet address: {address!r}")
        self.address = address


class InvalidPrizeConfig(PreconditionError, ValueError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("Invalid prize configuration: " + "; ".join(errors))
        self.errors = errors


class DistributionNotFound(PreconditionError):
    def __init__(self, distribution_id: int) -> None:
        super().__init__(f"Prize distribution {distribution_id} not found")
        self.distribution_id = distribution_id


class SecondChanceNotAllowed(PreconditionError):
    """Entry into the secondary draw was refused."""


# --- Invariants ---


class InvariantViolation(EngineError):
    """Operation would break a ledger or retry invariant; rejected before mutation."""


class InvalidQuantity(InvariantViolation, ValueError):
    def __init__(self, quantity: object) -> None:
        super().__init__(f"Quantity must be a strictly positive integer, got {quantity!r}")
        self.quantity = quantity


class PoolEntryNotFound(InvariantViolation):
    def __init__(self, gift_id: str) -> None:
        super().__init__(f"Gift pool entry {gift_id!r} not found")
        self.gift_id = gift_id


class InsufficientReservation(InvariantViolation):
    def __init__(self, gift_id: str, quantity: int) -> None:
        super().__init__(f"Gift {gift_id!r} has fewer than {quantity} reserved units")
        self.gift_id = gift_id
        self.quantity = quantity


class AttemptsExhausted(InvariantViolation):
    def __init__(self, distribution_id: int, attempts: int) -> None:
        super().__init__(f"Prize distribution {distribution_id} exhausted its {attempts} attempts")
        self.distribution_id = distribution_id
        self.attempts = attempts


# --- Transient ---


class TransientError(EngineError):
    """External fault captured on the distribution record."""


class PrizeSendFailed(TransientError):
    """The external sender reported failure or timed out."""
