import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List

from shared.errors import (
    BracketGenerationFailed, InsufficientParticipants, InvalidState, PermissionDenied,
    TournamentError, ValidationError, persistence_call,
)
from shared.events import (
    start_compensated_event, state_changed_event, tournament_created_event, tournament_updated_event,
)
from shared.state_machine import TournamentState, TournamentStateMachine
from .bracket_generator import BracketGenerator, BracketResult
from .domain import BracketState, Tournament, TournamentFormat, User, utc_now
from .event_publisher import EventPublisher
from .lookups import load_tournament, load_user
from .stores import Stores
from .validation import ensure_aware, new_id, require_id, require_page

logger = logging.getLogger(__name__)

MIN_PARTICIPANTS_TO_START = 2
MAX_NAME_LENGTH = 200

EDITABLE_FIELDS = (
    'name', 'description', 'format', 'min_participants', 'max_participants',
    'registration_deadline', 'start_date',
)


@dataclass
class StartResult:
    tournament: Tournament
    bracket: BracketResult
    message: str

    def to_dict(self):
        return {
            'message': self.message,
            'tournament': self.tournament.to_dict(),
            'bracket': self.bracket.to_dict(),
        }


def _validated_details(name, tournament_format, min_participants, max_participants,
                       registration_deadline, start_date) -> dict:
    name = (name or '').strip()
    if not name:
        raise ValidationError("name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"name must be at most {MAX_NAME_LENGTH} characters")

    try:
        if not isinstance(tournament_format, TournamentFormat):
            tournament_format = TournamentFormat(tournament_format.upper())
    except (ValueError, AttributeError):
        raise ValidationError(f"Unknown tournament format '{tournament_format}'")

    for field_name, value in (('min_participants', min_participants), ('max_participants', max_participants)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 2):
            raise ValidationError(f"{field_name} must be an integer of at least 2")
    if min_participants is not None and max_participants is not None and min_participants > max_participants:
        raise ValidationError("min_participants cannot exceed max_participants")

    registration_deadline = ensure_aware(registration_deadline)
    start_date = ensure_aware(start_date)
    if registration_deadline and start_date and registration_deadline > start_date:
        raise ValidationError("registration_deadline must not be after start_date")

    return {
        'name': name,
        'format': tournament_format,
        'min_participants': min_participants,
        'max_participants': max_participants,
        'registration_deadline': registration_deadline,
        'start_date': start_date,
    }


class TournamentOrchestrator:
    """
    Owns tournament status transitions:
    - Create tournaments in DRAFT and edit them while they stay there
    - Open, complete and cancel them
    - Start them, generating the first-round bracket

    Every status write is a compare-and-swap on the status the caller saw,
    so two concurrent transitions can never both succeed.
    """

    def __init__(
        self,
        stores: Stores,
        generator: BracketGenerator = None,
        events: EventPublisher = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.stores = stores
        self.events = events or EventPublisher()
        self.generator = generator or BracketGenerator(stores, events=self.events)
        self.clock = clock

    def create_tournament(
        self,
        created_by: str,
        name: str,
        tournament_format=TournamentFormat.SINGLE_ELIMINATION,
        description: str = None,
        min_participants: int = None,
        max_participants: int = None,
        registration_deadline: datetime = None,
        start_date: datetime = None,
        deadline=None
    ) -> Tournament:
        """Create a new tournament in DRAFT state owned by ``created_by``."""
        created_by = require_id(created_by, 'created_by')
        details = _validated_details(name, tournament_format, min_participants, max_participants,
                                     registration_deadline, start_date)

        load_user(self.stores, created_by, deadline)

        tournament = Tournament(
            id=new_id(),
            name=details['name'],
            created_by=created_by,
            format=details['format'],
            description=description,
            min_participants=details['min_participants'],
            max_participants=details['max_participants'],
            registration_deadline=details['registration_deadline'],
            start_date=details['start_date'],
        )
        tournament = persistence_call(deadline, 'tournaments.save', self.stores.tournaments.save, tournament)

        logger.info(f"Created tournament {tournament.id} ({tournament.name}) by {created_by}")
        self.events.publish(tournament_created_event(tournament.id, tournament.name, tournament.format.value))
        return tournament

    def update_tournament(self, tournament_id: str, requesting_user_id: str, changes: dict, deadline=None) -> Tournament:
        """
        Edit the descriptive fields of a DRAFT tournament.

        ``changes`` holds any subset of EDITABLE_FIELDS. The merged result is
        validated like a new tournament, and the write only lands while the
        tournament is still DRAFT.
        """
        tournament_id = require_id(tournament_id, 'tournament_id')
        requesting_user_id = require_id(requesting_user_id, 'requesting_user_id')
        changes = dict(changes or {})
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(unknown)}")
        if not changes:
            raise ValidationError("No fields to update")

        tournament = load_tournament(self.stores, tournament_id, deadline)
        if not TournamentStateMachine(tournament.status).can_perform('edit'):
            raise InvalidState(f"Cannot edit tournament with status {tournament.status.value}")
        user = load_user(self.stores, requesting_user_id, deadline)
        self._authorize(tournament, user, 'edit')

        merged = {
            'name': tournament.name,
            'format': tournament.format,
            'min_participants': tournament.min_participants,
            'max_participants': tournament.max_participants,
            'registration_deadline': tournament.registration_deadline,
            'start_date': tournament.start_date,
        }
        merged.update({k: v for k, v in changes.items() if k != 'description'})
        details = _validated_details(merged['name'], merged['format'], merged['min_participants'],
                                     merged['max_participants'], merged['registration_deadline'],
                                     merged['start_date'])
        for field_name, value in details.items():
            setattr(tournament, field_name, value)
        if 'description' in changes:
            tournament.description = changes['description']

        updated = persistence_call(deadline, 'tournaments.save', self.stores.tournaments.save,
                                   tournament, TournamentState.DRAFT)
        if updated is None:
            current = load_tournament(self.stores, tournament_id, deadline)
            raise InvalidState(
                f"Tournament {tournament_id} changed concurrently. Current state: {current.status.value}"
            )

        logger.info(f"Updated tournament {tournament_id}: {', '.join(sorted(changes))}")
        self.events.publish(tournament_updated_event(tournament_id, list(changes)))
        return updated

    def get_tournament(self, tournament_id: str, deadline=None) -> Tournament:
        return load_tournament(self.stores, require_id(tournament_id, 'tournament_id'), deadline)

    def list_tournaments(
        self,
        status=None,
        limit: int = 50,
        offset: int = 0,
        deadline=None
    ) -> List[Tournament]:
        """List tournaments, newest first, optionally filtered by status."""
        if status is not None:
            status = TournamentStateMachine.from_state_string(status).state
        limit, offset = require_page(limit, offset)
        return persistence_call(deadline, 'tournaments.list', self.stores.tournaments.list,
                                status, limit, offset)

    def _authorize(self, tournament: Tournament, user: User, verb: str):
        if not tournament.is_managed_by(user):
            raise PermissionDenied(f"Only admins or the tournament creator can {verb} a tournament")

    def _swap(
        self,
        tournament: Tournament,
        expected: TournamentState,
        new: TournamentState,
        action: str,
        bracket_state: BracketState = None,
        deadline=None
    ) -> Tournament:
        updated = persistence_call(deadline, 'tournaments.transition_status',
                                   self.stores.tournaments.transition_status,
                                   tournament.id, expected, new, bracket_state)
        if updated is None:
            current = load_tournament(self.stores, tournament.id, deadline)
            raise InvalidState(
                f"Tournament {tournament.id} changed concurrently. Current state: {current.status.value}"
            )
        logger.info(f"Tournament {tournament.id}: {expected.value} -> {new.value} ({action})")
        self.events.publish(state_changed_event(tournament.id, expected.value, new.value, action))
        return updated

    def _transition(self, tournament: Tournament, action: str, deadline=None) -> Tournament:
        target = TournamentStateMachine(tournament.status).transition(action)
        return self._swap(tournament, tournament.status, target, action, deadline=deadline)

    def _apply_action(self, tournament_id: str, user_id: str, action: str, deadline=None) -> Tournament:
        tournament_id = require_id(tournament_id, 'tournament_id')
        user_id = require_id(user_id, 'requesting_user_id')

        tournament = load_tournament(self.stores, tournament_id, deadline)
        user = load_user(self.stores, user_id, deadline)
        self._authorize(tournament, user, action)
        return self._transition(tournament, action, deadline)

    def open_tournament(self, tournament_id: str, requesting_user_id: str, deadline=None) -> Tournament:
        return self._apply_action(tournament_id, requesting_user_id, 'open', deadline)

    def complete_tournament(self, tournament_id: str, requesting_user_id: str, deadline=None) -> Tournament:
        return self._apply_action(tournament_id, requesting_user_id, 'complete', deadline)

    def cancel_tournament(self, tournament_id: str, requesting_user_id: str, deadline=None) -> Tournament:
        return self._apply_action(tournament_id, requesting_user_id, 'cancel', deadline)

    def conclude_tournament(self, tournament_id: str, deadline=None) -> Tournament:
        """Complete an ACTIVE tournament whose bracket has produced its final result."""
        tournament = load_tournament(self.stores, require_id(tournament_id, 'tournament_id'), deadline)
        return self._transition(tournament, 'complete', deadline)

    def start_tournament(self, tournament_id: str, requesting_user_id: str, deadline=None) -> StartResult:
        """
        Move an OPEN tournament to ACTIVE and generate its first round.

        The status swap carries a PENDING bracket marker and closes
        registration, so the participant list read after it is final. If
        generation fails the tournament is swapped back to OPEN with a FAILED
        marker before the error is raised as BracketGenerationFailed.
        """
        tournament_id = require_id(tournament_id, 'tournament_id')
        requesting_user_id = require_id(requesting_user_id, 'requesting_user_id')

        tournament = load_tournament(self.stores, tournament_id, deadline)
        if tournament.status != TournamentState.OPEN:
            raise InvalidState(
                f"Only tournaments in OPEN state can be started. Current state: {tournament.status.value}"
            )

        user = load_user(self.stores, requesting_user_id, deadline)
        self._authorize(tournament, user, 'start')

        required = max(MIN_PARTICIPANTS_TO_START, tournament.min_participants or 0)
        count = persistence_call(deadline, 'tournaments.count_participants',
                                 self.stores.tournaments.count_participants, tournament_id)
        if count < required:
            raise InsufficientParticipants(f"Tournament needs at least {required} participants to start")

        active = self._swap(tournament, TournamentState.OPEN, TournamentState.ACTIVE, 'start',
                            bracket_state=BracketState.PENDING, deadline=deadline)

        try:
            participants = persistence_call(deadline, 'tournaments.list_participants',
                                            self.stores.tournaments.list_participants, tournament_id)
            if len(participants) < required:
                raise InsufficientParticipants(f"Tournament needs at least {required} participants to start")
            bracket = self.generator.generate(active, participants, deadline)
        except Exception as e:
            self._compensate_start(active, e)
            raise BracketGenerationFailed(e) from e

        # the bracket is committed; the final read ignores the deadline
        active = load_tournament(self.stores, tournament_id)
        message = f"Tournament started successfully with {bracket.matches_created} matches created"
        logger.info(f"Tournament {tournament_id}: {message}")
        return StartResult(tournament=active, bracket=bracket, message=message)

    def _compensate_start(self, tournament: Tournament, cause: Exception):
        reason = cause.message if isinstance(cause, TournamentError) else str(cause)
        logger.warning(f"Bracket generation failed for {tournament.id}, reverting to OPEN: {reason}")
        # runs without the request deadline
        try:
            reverted = self.stores.tournaments.transition_status(
                tournament.id, TournamentState.ACTIVE, TournamentState.OPEN,
                BracketState.FAILED, BracketState.PENDING
            )
            current = reverted or self.stores.tournaments.get(tournament.id)
        except Exception as revert_error:
            logger.error(f"Could not revert tournament {tournament.id} after failed start: {revert_error}")
            raise BracketGenerationFailed(cause, compensated=False) from cause
        if reverted is None:
            if (current is not None and current.status == TournamentState.OPEN
                    and current.bracket_state == BracketState.FAILED):
                logger.info(f"Tournament {tournament.id} was already reverted to OPEN by stalled-start recovery")
                return
            logger.error(f"Tournament {tournament.id} left ACTIVE while compensating a failed start")
            raise BracketGenerationFailed(cause, compensated=False) from cause
        self.events.publish(start_compensated_event(tournament.id, reason))

    def recover_stalled_starts(self, stale_after: timedelta = None, deadline=None) -> List[str]:
        """
        Revert ACTIVE tournaments whose bracket marker is still PENDING and
        which have no matches. Returns the ids that were reverted.

        With ``stale_after`` only tournaments whose last change is at least
        that old are considered, which leaves starts still in flight alone.
        """
        tournaments = self.stores.tournaments
        cutoff = self.clock() - stale_after if stale_after is not None else None
        stalled = []
        offset = 0
        page = 200
        # collect first; reverting shrinks the ACTIVE listing being paged
        while True:
            batch = persistence_call(deadline, 'tournaments.list', tournaments.list,
                                     TournamentState.ACTIVE, page, offset)
            stalled.extend(
                t for t in batch
                if t.bracket_state == BracketState.PENDING and (cutoff is None or t.updated_at <= cutoff)
            )
            if len(batch) < page:
                break
            offset += page

        recovered = []
        for tournament in stalled:
            if persistence_call(deadline, 'matches.has_any_matches',
                                self.stores.matches.has_any_matches, tournament.id):
                continue
            reverted = persistence_call(deadline, 'tournaments.transition_status',
                                        tournaments.transition_status, tournament.id,
                                        TournamentState.ACTIVE, TournamentState.OPEN,
                                        BracketState.FAILED, BracketState.PENDING)
            if reverted is not None:
                logger.warning(f"Recovered stalled start of tournament {tournament.id}")
                self.events.publish(start_compensated_event(tournament.id, 'stalled start recovered'))
                recovered.append(tournament.id)
        return recovered
