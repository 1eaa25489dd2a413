from enum import Enum
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    EXPIRED = "expired"
    INSUFFICIENT_PARTICIPANTS = "insufficient_participants"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PERSISTENCE_FAILURE = "persistence_failure"


class TournamentError(Exception):
    """Base class for every failure the tournament core reports to callers."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value}


class ValidationError(TournamentError):
    kind = ErrorKind.VALIDATION


class NotFound(TournamentError):
    kind = ErrorKind.NOT_FOUND


class PermissionDenied(TournamentError):
    kind = ErrorKind.PERMISSION_DENIED


class InvalidState(TournamentError):
    kind = ErrorKind.INVALID_STATE


class Conflict(TournamentError):
    kind = ErrorKind.CONFLICT


class DuplicateRegistration(Conflict):
    def __init__(self, tournament_id: str, player_id: str):
        self.tournament_id = tournament_id
        self.player_id = player_id
        super().__init__(f"Player {player_id} is already registered to tournament {tournament_id}")


class AlreadyGenerated(Conflict):
    def __init__(self, tournament_id: str, round_num: int = None):
        self.tournament_id = tournament_id
        self.round_num = round_num
        if round_num is None:
            message = f"Tournament {tournament_id} already has matches. Cannot generate bracket again"
        else:
            message = f"Round {round_num} of tournament {tournament_id} has already been generated"
        super().__init__(message)


class CapacityExceeded(TournamentError):
    kind = ErrorKind.CAPACITY_EXCEEDED


class Expired(TournamentError):
    kind = ErrorKind.EXPIRED


class InsufficientParticipants(TournamentError):
    kind = ErrorKind.INSUFFICIENT_PARTICIPANTS


class UnsupportedFormat(TournamentError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class PersistenceFailure(TournamentError):
    """A downstream storage error, wrapped but not interpreted."""

    kind = ErrorKind.PERSISTENCE_FAILURE

    def __init__(self, operation: str, cause: Optional[BaseException] = None, message: str = None):
        self.operation = operation
        self.cause = cause
        super().__init__(message or f"Persistence failure during {operation}: {cause}")


class PersistenceTimeout(PersistenceFailure):
    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, message=f"Deadline of {timeout}s exceeded before {operation}")


class OperationCancelled(PersistenceFailure):
    def __init__(self, operation: str):
        super().__init__(operation, message=f"Operation cancelled before {operation}")


class BracketGenerationFailed(TournamentError):
    """
    Raised by the start saga after the tournament status was reverted.
    Keeps the kind of the underlying error so callers can still branch on it.
    """

    def __init__(self, cause: BaseException, compensated: bool = True):
        self.cause = cause
        self.compensated = compensated
        reason = cause.message if isinstance(cause, TournamentError) else str(cause)
        super().__init__(f"Tournament started but bracket generation failed: {reason}")

    @property
    def kind(self) -> ErrorKind:
        if isinstance(self.cause, TournamentError):
            return self.cause.kind
        return ErrorKind.PERSISTENCE_FAILURE


def persistence_call(deadline, operation: str, fn: Callable, *args, **kwargs):
    """
    Run one store call under the request deadline.

    Domain errors raised by the store (duplicate registration, capacity,
    already generated) pass through untouched; anything else is wrapped
    as a PersistenceFailure.
    """
    if deadline is not None:
        deadline.check(operation)
    try:
        return fn(*args, **kwargs)
    except TournamentError:
        raise
    except Exception as e:
        logger.error(f"Store call {operation} failed: {e}")
        raise PersistenceFailure(operation, e) from e
