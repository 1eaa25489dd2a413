from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from shared.errors import ValidationError
from shared.state_machine import TournamentState
from .validation import new_id


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TournamentFormat(str, Enum):
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"
    DOUBLE_ELIMINATION = "DOUBLE_ELIMINATION"
    ROUND_ROBIN = "ROUND_ROBIN"
    SWISS = "SWISS"


class BracketState(str, Enum):
    """Saga marker kept next to the tournament status."""
    NONE = "NONE"
    PENDING = "PENDING"
    GENERATED = "GENERATED"
    FAILED = "FAILED"


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    PLAYER = "PLAYER"


@dataclass
class User:
    id: str
    display_name: str
    role: UserRole = UserRole.PLAYER
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_compete(self) -> bool:
        return self.role == UserRole.PLAYER

    def to_dict(self):
        return {
            'id': self.id,
            'display_name': self.display_name,
            'role': self.role.value,
            'created_at': _iso(self.created_at),
        }


@dataclass
class Tournament:
    id: str
    name: str
    created_by: str
    format: TournamentFormat = TournamentFormat.SINGLE_ELIMINATION
    status: TournamentState = TournamentState.DRAFT
    description: Optional[str] = None
    min_participants: Optional[int] = None
    max_participants: Optional[int] = None
    registration_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    bracket_state: BracketState = BracketState.NONE
    # round number -> sides that advance into that round without playing
    byes: Dict[int, List[List[str]]] = field(default_factory=dict)
    version: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_managed_by(self, user: User) -> bool:
        return user.is_admin or self.created_by == user.id

    def deadline_passed(self, now: datetime = None) -> bool:
        if self.registration_deadline is None:
            return False
        return (now or utc_now()) > self.registration_deadline

    def to_dict(self, participant_count: int = None):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'format': self.format.value,
            'status': self.status.value,
            'min_participants': self.min_participants,
            'max_participants': self.max_participants,
            'registration_deadline': _iso(self.registration_deadline),
            'start_date': _iso(self.start_date),
            'created_by': self.created_by,
            'bracket_state': self.bracket_state.value,
            'byes': {str(r): [list(side) for side in sides] for r, sides in sorted(self.byes.items())},
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if participant_count is not None:
            data['participant_count'] = participant_count
        return data


@dataclass(frozen=True)
class SetScore:
    home: int
    away: int

    def __post_init__(self):
        for games in (self.home, self.away):
            if isinstance(games, bool) or not isinstance(games, int) or games < 0:
                raise ValidationError("Set scores must be non-negative integers")

    @property
    def home_won(self) -> bool:
        return self.home > self.away

    @property
    def away_won(self) -> bool:
        return self.away > self.home

    def to_dict(self):
        return {'home': self.home, 'away': self.away}


HOME = "home"
AWAY = "away"


@dataclass
class Match:
    id: str
    tournament_id: str
    home_player_ids: List[str]
    away_player_ids: List[str]
    round_num: int = 1
    status: MatchStatus = MatchStatus.PENDING
    scheduled_at: Optional[datetime] = None
    location: Optional[str] = None
    score: Optional[List[SetScore]] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.home_player_ids = list(self.home_player_ids)
        self.away_player_ids = list(self.away_player_ids)
        for side in (self.home_player_ids, self.away_player_ids):
            if not 1 <= len(side) <= 2 or len(set(side)) != len(side):
                raise ValidationError("Each side of a match needs one or two distinct players")
        if set(self.home_player_ids) & set(self.away_player_ids):
            raise ValidationError("A player cannot appear on both sides of a match")

    @classmethod
    def pairing(cls, tournament_id: str, home: List[str], away: List[str], round_num: int = 1) -> "Match":
        return cls(id=new_id(), tournament_id=tournament_id,
                   home_player_ids=home, away_player_ids=away, round_num=round_num)

    @property
    def player_ids(self) -> Set[str]:
        return set(self.home_player_ids) | set(self.away_player_ids)

    def side_of(self, player_id: str) -> Optional[str]:
        if player_id in self.home_player_ids:
            return HOME
        if player_id in self.away_player_ids:
            return AWAY
        return None

    def sets_won(self):
        """Return (home_sets, away_sets) for the recorded score."""
        sets = self.score or []
        return (sum(1 for s in sets if s.home_won), sum(1 for s in sets if s.away_won))

    def winner_ids(self) -> Optional[List[str]]:
        if self.status != MatchStatus.COMPLETED or not self.score:
            return None
        home_sets, away_sets = self.sets_won()
        if home_sets > away_sets:
            return list(self.home_player_ids)
        if away_sets > home_sets:
            return list(self.away_player_ids)
        return None

    def can_modify(self) -> bool:
        return self.status not in (MatchStatus.COMPLETED, MatchStatus.CANCELED)

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round': self.round_num,
            'home': list(self.home_player_ids),
            'away': list(self.away_player_ids),
            'status': self.status.value,
            'scheduled_at': _iso(self.scheduled_at),
            'location': self.location,
            'score': [s.to_dict() for s in self.score] if self.score is not None else None,
            'winners': self.winner_ids(),
        }


@dataclass
class Statistic:
    player_id: str
    tournament_id: str
    wins: int = 0
    losses: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    games_won: int = 0
    games_lost: int = 0
    winning_percentage: Optional[float] = None
    id: str = field(default_factory=new_id)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def matches_played(self) -> int:
        return self.wins + self.losses

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'tournament_id': self.tournament_id,
            'matches_played': self.matches_played,
            'wins': self.wins,
            'losses': self.losses,
            'sets_won': self.sets_won,
            'sets_lost': self.sets_lost,
            'games_won': self.games_won,
            'games_lost': self.games_lost,
            'winning_percentage': self.winning_percentage,
            'updated_at': _iso(self.updated_at),
        }
