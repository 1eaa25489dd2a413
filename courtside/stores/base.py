from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from shared.state_machine import TournamentState
from ..domain import BracketState, Match, MatchStatus, Statistic, Tournament, User


class TournamentStore(ABC):
    """Tournament rows plus their registrations."""

    @abstractmethod
    def get(self, tournament_id: str) -> Optional[Tournament]:
        ...

    @abstractmethod
    def list(self, status: TournamentState = None, limit: int = 50, offset: int = 0) -> List[Tournament]:
        """Newest first."""

    @abstractmethod
    def save(self, tournament: Tournament, expected_status: TournamentState = None) -> Optional[Tournament]:
        """
        Insert a new tournament or overwrite its descriptive fields. With
        ``expected_status`` an existing row is only overwritten while it is
        still in that status; None is returned otherwise.
        """

    @abstractmethod
    def transition_status(
        self,
        tournament_id: str,
        expected: TournamentState,
        new: TournamentState,
        bracket_state: BracketState = None,
        expected_bracket_state: BracketState = None
    ) -> Optional[Tournament]:
        """
        Compare-and-swap the status. Returns the updated tournament, or None
        when the stored status no longer equals ``expected`` (or the stored
        bracket state no longer equals ``expected_bracket_state``).
        """

    @abstractmethod
    def count_participants(self, tournament_id: str) -> int:
        ...

    @abstractmethod
    def register_participant(self, tournament_id: str, player_id: str) -> None:
        """
        Atomic increment-with-ceiling, valid only while the tournament is
        OPEN. Raises DuplicateRegistration, InvalidState or CapacityExceeded
        without writing anything.
        """

    @abstractmethod
    def unregister_participant(self, tournament_id: str, player_id: str) -> bool:
        """
        Remove a registration while the tournament still accepts
        withdrawals (DRAFT or OPEN); raises InvalidState otherwise. Returns
        False when the player was not registered.
        """

    @abstractmethod
    def is_registered(self, tournament_id: str, player_id: str) -> bool:
        ...

    @abstractmethod
    def list_participants(self, tournament_id: str, limit: int = None, offset: int = 0) -> List[str]:
        """Player ids in registration order."""


class MatchStore(ABC):

    @abstractmethod
    def get(self, match_id: str) -> Optional[Match]:
        ...

    @abstractmethod
    def find_by_tournament(
        self,
        tournament_id: str,
        status: MatchStatus = None,
        round_num: int = None
    ) -> List[Match]:
        """Ordered by round, then creation order."""

    @abstractmethod
    def has_any_matches(self, tournament_id: str) -> bool:
        ...

    @abstractmethod
    def save(self, match: Match) -> Match:
        ...

    @abstractmethod
    def insert_first_round(self, tournament_id: str, matches: List[Match], byes: List[List[str]] = None) -> List[Match]:
        """
        Insert every match in one atomic write, record the round-1 byes and
        mark the tournament's bracket as GENERATED.

        Raises AlreadyGenerated if the tournament has any match already, and
        InvalidState unless the tournament is ACTIVE with a PENDING bracket.
        Nothing is written in either case.
        """

    @abstractmethod
    def insert_round(
        self,
        tournament_id: str,
        round_num: int,
        matches: List[Match],
        byes: List[List[str]] = None
    ) -> List[Match]:
        """
        Insert a later round and its byes in one atomic write. Raises
        AlreadyGenerated if ``round_num`` already has matches, and
        InvalidState unless the tournament is ACTIVE.
        """


class UserStore(ABC):

    @abstractmethod
    def get(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def save(self, user: User) -> User:
        ...


class StatisticStore(ABC):

    @abstractmethod
    def find_by_player_and_tournament(self, player_id: str, tournament_id: str) -> Optional[Statistic]:
        ...

    @abstractmethod
    def upsert(self, statistic: Statistic) -> Statistic:
        """Create the row or replace every field of the existing one."""

    @abstractmethod
    def list_by_tournament(self, tournament_id: str) -> List[Statistic]:
        ...

    @abstractmethod
    def list_by_player(self, player_id: str) -> List[Statistic]:
        """One row per tournament the player has statistics for."""


@dataclass
class Stores:
    tournaments: TournamentStore
    matches: MatchStore
    users: UserStore
    statistics: StatisticStore
