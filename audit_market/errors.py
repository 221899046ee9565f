"""Rejection types raised by the registry and the task ledger.

Every rejection is a `MarketError` (a `ValueError`), grouped under one of four
category bases so callers can tell apart a missing record, an illegal state, a
wrong caller and a wrong value. `TransferFailed` is raised when a bank transfer
inside an operation fails; the operation is rolled back as a whole.
"""

from __future__ import annotations


class MarketError(ValueError):
    pass


class NotFoundError(MarketError):
    pass


class StateConflictError(MarketError):
    pass


class AuthorizationError(MarketError):
    pass


class ValueMismatchError(MarketError):
    pass


class TransferFailed(MarketError):
    pass


# Registry


class AlreadyRegistered(StateConflictError):
    pass


class NotRegistered(NotFoundError):
    pass


class InvalidFee(ValueMismatchError):
    pass


class UnsupportedOperation(StateConflictError):
    """Raised for subscription-only calls on a suspension registry and vice versa."""


# Access control


class Unauthorized(AuthorizationError):
    pass


class ReservedAccount(AuthorizationError):
    """Raised when an identity names an escrow or registry account."""


# Task ledger


class TaskNotFound(NotFoundError):
    pass


class InvalidState(StateConflictError):
    pass


class DuplicateTask(StateConflictError):
    pass


class DuplicateSubmission(StateConflictError):
    pass


class DuplicateFindings(StateConflictError):
    pass


class FindingsExist(StateConflictError):
    pass


class NoFindings(StateConflictError):
    pass


class NoSubmissionOnRecord(StateConflictError):
    pass


class AgentNotValid(AuthorizationError):
    pass


class SubmitterCannotSubmit(AuthorizationError):
    pass


class SubmitterExcluded(AuthorizationError):
    pass


class EmptyTaskId(ValueMismatchError):
    pass


class EmptyReference(ValueMismatchError):
    pass


class EmptyFindings(ValueMismatchError):
    pass


class BountyMismatch(ValueMismatchError):
    pass
