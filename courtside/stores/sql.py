"""
Flask-SQLAlchemy implementation of the store interfaces.

Status changes are conditional ``UPDATE ... WHERE status = :expected``
statements; registrations use an increment of
``tournaments.participant_count`` guarded by both the status and the
ceiling, inside the same transaction as the registration insert and backed
by a unique (tournament, player) constraint. Round inserts lock the
tournament row and re-check its state before writing.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from shared.errors import AlreadyGenerated, CapacityExceeded, DuplicateRegistration, InvalidState, NotFound
from shared.state_machine import TournamentState, TournamentStateMachine
from ..domain import BracketState, Match, MatchStatus, Statistic, Tournament, User
from ..models import db, MatchRecord, RegistrationRecord, StatisticRecord, TournamentRecord, UserRecord
from .base import MatchStore, StatisticStore, Stores, TournamentStore, UserStore


@contextmanager
def _transaction():
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _now():
    return datetime.now(timezone.utc)


def _states_allowing(action: str) -> List[str]:
    return [s.value for s in TournamentStateMachine.states_allowing(action)]


def _locked_tournament(tournament_id: str) -> TournamentRecord:
    # row lock for the rest of the transaction where the dialect supports it
    record = (
        db.session.query(TournamentRecord)
        .filter_by(id=tournament_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if record is None:
        raise NotFound(f"Tournament with ID {tournament_id} not found")
    return record


def _current_status(tournament_id: str) -> Optional[str]:
    return db.session.query(TournamentRecord.status).filter_by(id=tournament_id).scalar()


class SqlTournamentStore(TournamentStore):

    def get(self, tournament_id: str) -> Optional[Tournament]:
        record = db.session.get(TournamentRecord, tournament_id)
        return record.to_domain() if record else None

    def list(self, status: TournamentState = None, limit: int = 50, offset: int = 0) -> List[Tournament]:
        query = TournamentRecord.query
        if status:
            query = query.filter_by(status=status.value)
        query = query.order_by(TournamentRecord.created_at.desc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [r.to_domain() for r in query.all()]

    def save(self, tournament: Tournament, expected_status: TournamentState = None) -> Optional[Tournament]:
        with _transaction():
            record = (
                db.session.query(TournamentRecord)
                .filter_by(id=tournament.id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if record is None:
                record = TournamentRecord(
                    id=tournament.id,
                    status=tournament.status.value,
                    bracket_state=tournament.bracket_state.value,
                    created_at=tournament.created_at,
                )
                db.session.add(record)
            elif expected_status is not None and record.status != expected_status.value:
                return None
            record.apply(tournament)
        return self.get(tournament.id)

    def transition_status(self, tournament_id, expected, new, bracket_state=None, expected_bracket_state=None):
        values = {
            TournamentRecord.status: new.value,
            TournamentRecord.version: TournamentRecord.version + 1,
            TournamentRecord.updated_at: _now(),
        }
        if bracket_state is not None:
            values[TournamentRecord.bracket_state] = bracket_state.value
        conditions = [TournamentRecord.id == tournament_id, TournamentRecord.status == expected.value]
        if expected_bracket_state is not None:
            conditions.append(TournamentRecord.bracket_state == expected_bracket_state.value)
        stmt = (
            update(TournamentRecord)
            .where(*conditions)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        with _transaction():
            swapped = db.session.execute(stmt).rowcount == 1
        if not swapped:
            return None
        db.session.expire_all()
        return self.get(tournament_id)

    def count_participants(self, tournament_id: str) -> int:
        return db.session.query(func.count(RegistrationRecord.id)).filter_by(
            tournament_id=tournament_id
        ).scalar()

    def register_participant(self, tournament_id: str, player_id: str) -> None:
        open_states = _states_allowing('register')
        guarded_increment = (
            update(TournamentRecord)
            .where(
                TournamentRecord.id == tournament_id,
                TournamentRecord.status.in_(open_states),
                or_(
                    TournamentRecord.max_participants.is_(None),
                    TournamentRecord.participant_count < TournamentRecord.max_participants,
                ),
            )
            .values({TournamentRecord.participant_count: TournamentRecord.participant_count + 1})
            .execution_options(synchronize_session=False)
        )
        try:
            with _transaction():
                if self.is_registered(tournament_id, player_id):
                    raise DuplicateRegistration(tournament_id, player_id)
                if db.session.execute(guarded_increment).rowcount != 1:
                    status = _current_status(tournament_id)
                    if status is None:
                        raise NotFound(f"Tournament with ID {tournament_id} not found")
                    if status not in open_states:
                        raise InvalidState(f"Cannot register for tournament with status {status}")
                    raise CapacityExceeded("Tournament has reached maximum participants")
                db.session.add(RegistrationRecord(tournament_id=tournament_id, player_id=player_id))
                db.session.flush()
        except IntegrityError:
            # lost a race against a concurrent registration of the same player
            raise DuplicateRegistration(tournament_id, player_id)
        db.session.expire_all()

    def unregister_participant(self, tournament_id: str, player_id: str) -> bool:
        guarded_decrement = (
            update(TournamentRecord)
            .where(
                TournamentRecord.id == tournament_id,
                TournamentRecord.status.in_(_states_allowing('unregister')),
            )
            .values({TournamentRecord.participant_count: TournamentRecord.participant_count - 1})
            .execution_options(synchronize_session=False)
        )
        with _transaction():
            deleted = RegistrationRecord.query.filter_by(
                tournament_id=tournament_id, player_id=player_id
            ).delete(synchronize_session=False)
            if deleted and db.session.execute(guarded_decrement).rowcount != 1:
                # rolls the delete back
                raise InvalidState(
                    f"Cannot unregister from tournament with status {_current_status(tournament_id)}"
                )
        db.session.expire_all()
        return bool(deleted)

    def is_registered(self, tournament_id: str, player_id: str) -> bool:
        return RegistrationRecord.query.filter_by(
            tournament_id=tournament_id, player_id=player_id
        ).first() is not None

    def list_participants(self, tournament_id: str, limit: int = None, offset: int = 0) -> List[str]:
        query = RegistrationRecord.query.filter_by(tournament_id=tournament_id).order_by(
            RegistrationRecord.registered_at, RegistrationRecord.id
        )
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [r.player_id for r in query.all()]


class SqlMatchStore(MatchStore):

    def get(self, match_id: str) -> Optional[Match]:
        record = MatchRecord.query.filter_by(id=match_id).first()
        return record.to_domain() if record else None

    def find_by_tournament(self, tournament_id, status: MatchStatus = None, round_num: int = None):
        query = MatchRecord.query.filter_by(tournament_id=tournament_id)
        if status is not None:
            query = query.filter_by(status=status.value)
        if round_num is not None:
            query = query.filter_by(round_num=round_num)
        query = query.order_by(MatchRecord.round_num, MatchRecord.seq)
        return [r.to_domain() for r in query.all()]

    def has_any_matches(self, tournament_id: str) -> bool:
        return db.session.query(MatchRecord.seq).filter_by(tournament_id=tournament_id).first() is not None

    def save(self, match: Match) -> Match:
        with _transaction():
            record = MatchRecord.query.filter_by(id=match.id).first()
            if record is None:
                record = MatchRecord()
                db.session.add(record)
            record.apply(match)
        return self.get(match.id)

    def _add_round(self, tournament: TournamentRecord, round_num: int, matches: List[Match], byes) -> None:
        for match in matches:
            record = MatchRecord()
            record.apply(match)
            db.session.add(record)
        if byes:
            # reassigned so the JSON column is flagged dirty
            tournament.byes = {**(tournament.byes or {}), str(round_num): [list(side) for side in byes]}

    def insert_first_round(self, tournament_id: str, matches: List[Match], byes: List[List[str]] = None) -> List[Match]:
        with _transaction():
            tournament = _locked_tournament(tournament_id)
            if self.has_any_matches(tournament_id):
                raise AlreadyGenerated(tournament_id)
            if (tournament.status != TournamentState.ACTIVE.value
                    or tournament.bracket_state != BracketState.PENDING.value):
                raise InvalidState(
                    f"Tournament {tournament_id} is not awaiting its bracket "
                    f"(status {tournament.status}, bracket {tournament.bracket_state})"
                )
            self._add_round(tournament, 1, matches, byes)
            tournament.bracket_state = BracketState.GENERATED.value
        return [self.get(m.id) for m in matches]

    def insert_round(self, tournament_id: str, round_num: int, matches: List[Match], byes=None) -> List[Match]:
        with _transaction():
            tournament = _locked_tournament(tournament_id)
            exists = db.session.query(MatchRecord.seq).filter_by(
                tournament_id=tournament_id, round_num=round_num
            ).first() is not None
            if exists:
                raise AlreadyGenerated(tournament_id, round_num)
            if tournament.status != TournamentState.ACTIVE.value:
                raise InvalidState(f"Cannot add round {round_num} while tournament is {tournament.status}")
            self._add_round(tournament, round_num, matches, byes)
        return [self.get(m.id) for m in matches]


class SqlUserStore(UserStore):

    def get(self, user_id: str) -> Optional[User]:
        record = db.session.get(UserRecord, user_id)
        return record.to_domain() if record else None

    def save(self, user: User) -> User:
        with _transaction():
            record = db.session.get(UserRecord, user.id)
            if record is None:
                record = UserRecord(id=user.id, created_at=user.created_at)
                db.session.add(record)
            record.apply(user)
        return self.get(user.id)


class SqlStatisticStore(StatisticStore):

    def find_by_player_and_tournament(self, player_id, tournament_id):
        record = StatisticRecord.query.filter_by(player_id=player_id, tournament_id=tournament_id).first()
        return record.to_domain() if record else None

    def upsert(self, statistic: Statistic) -> Statistic:
        with _transaction():
            record = StatisticRecord.query.filter_by(
                player_id=statistic.player_id, tournament_id=statistic.tournament_id
            ).first()
            if record is None:
                record = StatisticRecord(
                    id=statistic.id,
                    player_id=statistic.player_id,
                    tournament_id=statistic.tournament_id,
                )
                db.session.add(record)
            record.apply(statistic)
            record.updated_at = _now()
        return self.find_by_player_and_tournament(statistic.player_id, statistic.tournament_id)

    def list_by_tournament(self, tournament_id: str) -> List[Statistic]:
        records = StatisticRecord.query.filter_by(tournament_id=tournament_id).order_by(
            StatisticRecord.player_id
        ).all()
        return [r.to_domain() for r in records]

    def list_by_player(self, player_id: str) -> List[Statistic]:
        records = StatisticRecord.query.filter_by(player_id=player_id).order_by(
            StatisticRecord.updated_at.desc()
        ).all()
        return [r.to_domain() for r in records]


def sql_stores() -> Stores:
    return Stores(
        tournaments=SqlTournamentStore(),
        matches=SqlMatchStore(),
        users=SqlUserStore(),
        statistics=SqlStatisticStore(),
    )
