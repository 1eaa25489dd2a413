from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

from shared.state_machine import TournamentState
from .domain import (
    BracketState, Match, MatchStatus, SetScore, Statistic, Tournament, TournamentFormat, User, UserRole,
)
from .validation import ensure_aware

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


class UserRecord(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True)
    display_name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=UserRole.PLAYER.value)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_domain(self) -> User:
        return User(
            id=self.id,
            display_name=self.display_name,
            role=UserRole(self.role),
            created_at=ensure_aware(self.created_at),
        )

    def apply(self, user: User):
        self.display_name = user.display_name
        self.role = user.role.value


class TournamentRecord(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    format = db.Column(db.String(30), nullable=False, default=TournamentFormat.SINGLE_ELIMINATION.value)
    status = db.Column(db.String(20), nullable=False, default=TournamentState.DRAFT.value, index=True)
    bracket_state = db.Column(db.String(20), nullable=False, default=BracketState.NONE.value)
    # {"2": [["player-id"]]}: sides advancing into a round without playing
    byes = db.Column(db.JSON, nullable=True)
    min_participants = db.Column(db.Integer, nullable=True)
    max_participants = db.Column(db.Integer, nullable=True)
    # Maintained by the guarded increment in SqlTournamentStore.register_participant
    participant_count = db.Column(db.Integer, nullable=False, default=0)
    registration_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(36), nullable=False)
    version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    registrations = db.relationship('RegistrationRecord', back_populates='tournament', cascade='all, delete-orphan')
    matches = db.relationship('MatchRecord', back_populates='tournament', cascade='all, delete-orphan')

    def to_domain(self) -> Tournament:
        return Tournament(
            id=self.id,
            name=self.name,
            description=self.description,
            created_by=self.created_by,
            format=TournamentFormat(self.format),
            status=TournamentState(self.status),
            bracket_state=BracketState(self.bracket_state),
            byes={int(r): [list(side) for side in sides] for r, sides in (self.byes or {}).items()},
            min_participants=self.min_participants,
            max_participants=self.max_participants,
            registration_deadline=ensure_aware(self.registration_deadline),
            start_date=ensure_aware(self.start_date),
            version=self.version,
            created_at=ensure_aware(self.created_at),
            updated_at=ensure_aware(self.updated_at),
        )

    def apply(self, tournament: Tournament):
        """Copy descriptive fields; status, bracket state and byes move only through store transitions."""
        self.name = tournament.name
        self.description = tournament.description
        self.format = tournament.format.value
        self.min_participants = tournament.min_participants
        self.max_participants = tournament.max_participants
        self.registration_deadline = tournament.registration_deadline
        self.start_date = tournament.start_date
        self.created_by = tournament.created_by


class RegistrationRecord(db.Model):
    __tablename__ = 'registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(36), db.ForeignKey('tournaments.id'), nullable=False, index=True)
    player_id = db.Column(db.String(36), nullable=False, index=True)
    registered_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    tournament = db.relationship('TournamentRecord', back_populates='registrations')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='unique_player_per_tournament'),
    )


class MatchRecord(db.Model):
    __tablename__ = 'matches'

    seq = db.Column(db.Integer, primary_key=True, autoincrement=True)
    id = db.Column(db.String(36), unique=True, nullable=False, index=True)
    tournament_id = db.Column(db.String(36), db.ForeignKey('tournaments.id'), nullable=False, index=True)
    round_num = db.Column(db.Integer, nullable=False)
    home_player_ids = db.Column(db.JSON, nullable=False)
    away_player_ids = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=MatchStatus.PENDING.value)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    location = db.Column(db.String(200), nullable=True)
    score = db.Column(db.JSON, nullable=True)  # [{"home": 6, "away": 4}, ...]
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tournament = db.relationship('TournamentRecord', back_populates='matches')

    def to_domain(self) -> Match:
        return Match(
            id=self.id,
            tournament_id=self.tournament_id,
            home_player_ids=list(self.home_player_ids),
            away_player_ids=list(self.away_player_ids),
            round_num=self.round_num,
            status=MatchStatus(self.status),
            scheduled_at=ensure_aware(self.scheduled_at),
            location=self.location,
            score=[SetScore(s['home'], s['away']) for s in self.score] if self.score is not None else None,
            created_at=ensure_aware(self.created_at),
            updated_at=ensure_aware(self.updated_at),
        )

    def apply(self, match: Match):
        self.id = match.id
        self.tournament_id = match.tournament_id
        self.round_num = match.round_num
        self.home_player_ids = list(match.home_player_ids)
        self.away_player_ids = list(match.away_player_ids)
        self.status = match.status.value
        self.scheduled_at = match.scheduled_at
        self.location = match.location
        self.score = [s.to_dict() for s in match.score] if match.score is not None else None


class StatisticRecord(db.Model):
    __tablename__ = 'statistics'

    id = db.Column(db.String(36), primary_key=True)
    player_id = db.Column(db.String(36), nullable=False, index=True)
    tournament_id = db.Column(db.String(36), db.ForeignKey('tournaments.id'), nullable=False, index=True)
    wins = db.Column(db.Integer, nullable=False, default=0)
    losses = db.Column(db.Integer, nullable=False, default=0)
    sets_won = db.Column(db.Integer, nullable=False, default=0)
    sets_lost = db.Column(db.Integer, nullable=False, default=0)
    games_won = db.Column(db.Integer, nullable=False, default=0)
    games_lost = db.Column(db.Integer, nullable=False, default=0)
    winning_percentage = db.Column(db.Float, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint('player_id', 'tournament_id', name='unique_statistic_per_player'),
    )

    def to_domain(self) -> Statistic:
        return Statistic(
            id=self.id,
            player_id=self.player_id,
            tournament_id=self.tournament_id,
            wins=self.wins,
            losses=self.losses,
            sets_won=self.sets_won,
            sets_lost=self.sets_lost,
            games_won=self.games_won,
            games_lost=self.games_lost,
            winning_percentage=self.winning_percentage,
            updated_at=ensure_aware(self.updated_at),
        )

    def apply(self, statistic: Statistic):
        self.wins = statistic.wins
        self.losses = statistic.losses
        self.sets_won = statistic.sets_won
        self.sets_lost = statistic.sets_lost
        self.games_won = statistic.games_won
        self.games_lost = statistic.games_lost
        self.winning_percentage = statistic.winning_percentage
