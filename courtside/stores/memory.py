"""
In-process reference implementation of the store interfaces.

Every store built from the same ``MemoryBackend`` shares one re-entrant lock,
so compare-and-swap transitions, status-guarded registrations and the
exactly-once round inserts are atomic with respect to each other. Objects are
copied on the way in and out; callers never hold a reference into the backend.
"""
import copy
import threading
from collections import OrderedDict
from typing import Dict, List, Optional

from shared.errors import AlreadyGenerated, CapacityExceeded, DuplicateRegistration, InvalidState, NotFound
from shared.state_machine import TournamentState, TournamentStateMachine
from ..domain import BracketState, Match, MatchStatus, Statistic, Tournament, User, utc_now
from .base import MatchStore, StatisticStore, Stores, TournamentStore, UserStore


class MemoryBackend:
    def __init__(self):
        self.lock = threading.RLock()
        self.tournaments: Dict[str, Tournament] = {}
        self.registrations: Dict[str, "OrderedDict[str, object]"] = {}
        self.matches: "OrderedDict[str, Match]" = OrderedDict()
        self.users: Dict[str, User] = {}
        self.statistics: Dict[tuple, Statistic] = {}

    def tournament(self, tournament_id: str) -> Tournament:
        t = self.tournaments.get(tournament_id)
        if t is None:
            raise NotFound(f"Tournament with ID {tournament_id} not found")
        return t


def _paginate(items: list, limit: Optional[int], offset: int) -> list:
    items = items[offset:]
    return items if limit is None else items[:limit]


def _has_matches(backend: MemoryBackend, tournament_id: str, round_num: int = None) -> bool:
    return any(
        m.tournament_id == tournament_id and (round_num is None or m.round_num == round_num)
        for m in backend.matches.values()
    )


class MemoryTournamentStore(TournamentStore):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def get(self, tournament_id: str) -> Optional[Tournament]:
        with self._b.lock:
            t = self._b.tournaments.get(tournament_id)
            return copy.deepcopy(t) if t else None

    def list(self, status: TournamentState = None, limit: int = 50, offset: int = 0) -> List[Tournament]:
        with self._b.lock:
            rows = [t for t in self._b.tournaments.values() if status is None or t.status == status]
            rows.sort(key=lambda t: t.created_at, reverse=True)
            return [copy.deepcopy(t) for t in _paginate(rows, limit, offset)]

    def save(self, tournament: Tournament, expected_status: TournamentState = None) -> Optional[Tournament]:
        with self._b.lock:
            stored = copy.deepcopy(tournament)
            existing = self._b.tournaments.get(tournament.id)
            if existing is not None:
                if expected_status is not None and existing.status != expected_status:
                    return None
                # status, bracket state and byes move only through transitions and round inserts
                stored.status = existing.status
                stored.bracket_state = existing.bracket_state
                stored.byes = copy.deepcopy(existing.byes)
                stored.version = existing.version
                stored.created_at = existing.created_at
            stored.updated_at = utc_now()
            self._b.tournaments[tournament.id] = stored
            self._b.registrations.setdefault(tournament.id, OrderedDict())
            return copy.deepcopy(stored)

    def transition_status(self, tournament_id, expected, new, bracket_state=None, expected_bracket_state=None):
        with self._b.lock:
            t = self._b.tournaments.get(tournament_id)
            if t is None or t.status != expected:
                return None
            if expected_bracket_state is not None and t.bracket_state != expected_bracket_state:
                return None
            t.status = new
            if bracket_state is not None:
                t.bracket_state = bracket_state
            t.version += 1
            t.updated_at = utc_now()
            return copy.deepcopy(t)

    def count_participants(self, tournament_id: str) -> int:
        with self._b.lock:
            return len(self._b.registrations.get(tournament_id, {}))

    def register_participant(self, tournament_id: str, player_id: str) -> None:
        with self._b.lock:
            t = self._b.tournament(tournament_id)
            registered = self._b.registrations.setdefault(tournament_id, OrderedDict())
            if player_id in registered:
                raise DuplicateRegistration(tournament_id, player_id)
            if not TournamentStateMachine(t.status).can_perform('register'):
                raise InvalidState(f"Cannot register for tournament with status {t.status.value}")
            if t.max_participants is not None and len(registered) >= t.max_participants:
                raise CapacityExceeded("Tournament has reached maximum participants")
            registered[player_id] = utc_now()

    def unregister_participant(self, tournament_id: str, player_id: str) -> bool:
        with self._b.lock:
            registered = self._b.registrations.get(tournament_id, {})
            if player_id not in registered:
                return False
            t = self._b.tournament(tournament_id)
            if not TournamentStateMachine(t.status).can_perform('unregister'):
                raise InvalidState(f"Cannot unregister from tournament with status {t.status.value}")
            del registered[player_id]
            return True

    def is_registered(self, tournament_id: str, player_id: str) -> bool:
        with self._b.lock:
            return player_id in self._b.registrations.get(tournament_id, {})

    def list_participants(self, tournament_id: str, limit: int = None, offset: int = 0) -> List[str]:
        with self._b.lock:
            return _paginate(list(self._b.registrations.get(tournament_id, {})), limit, offset)


class MemoryMatchStore(MatchStore):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def get(self, match_id: str) -> Optional[Match]:
        with self._b.lock:
            m = self._b.matches.get(match_id)
            return copy.deepcopy(m) if m else None

    def find_by_tournament(self, tournament_id, status: MatchStatus = None, round_num: int = None):
        with self._b.lock:
            rows = [
                m for m in self._b.matches.values()
                if m.tournament_id == tournament_id
                and (status is None or m.status == status)
                and (round_num is None or m.round_num == round_num)
            ]
            # dict order is insertion order, so the sort is stable per round
            rows.sort(key=lambda m: m.round_num)
            return [copy.deepcopy(m) for m in rows]

    def has_any_matches(self, tournament_id: str) -> bool:
        with self._b.lock:
            return _has_matches(self._b, tournament_id)

    def save(self, match: Match) -> Match:
        with self._b.lock:
            stored = copy.deepcopy(match)
            stored.updated_at = utc_now()
            self._b.matches[match.id] = stored
            return copy.deepcopy(stored)

    def _insert(self, tournament: Tournament, round_num: int, matches: List[Match], byes) -> List[Match]:
        for m in matches:
            self._b.matches[m.id] = copy.deepcopy(m)
        if byes:
            tournament.byes[round_num] = [list(side) for side in byes]
        tournament.updated_at = utc_now()
        return [copy.deepcopy(m) for m in matches]

    def insert_first_round(self, tournament_id: str, matches: List[Match], byes: List[List[str]] = None) -> List[Match]:
        with self._b.lock:
            t = self._b.tournament(tournament_id)
            if _has_matches(self._b, tournament_id):
                raise AlreadyGenerated(tournament_id)
            if t.status != TournamentState.ACTIVE or t.bracket_state != BracketState.PENDING:
                raise InvalidState(
                    f"Tournament {tournament_id} is not awaiting its bracket "
                    f"(status {t.status.value}, bracket {t.bracket_state.value})"
                )
            created = self._insert(t, 1, matches, byes)
            t.bracket_state = BracketState.GENERATED
            return created

    def insert_round(self, tournament_id: str, round_num: int, matches: List[Match], byes=None) -> List[Match]:
        with self._b.lock:
            t = self._b.tournament(tournament_id)
            if _has_matches(self._b, tournament_id, round_num):
                raise AlreadyGenerated(tournament_id, round_num)
            if t.status != TournamentState.ACTIVE:
                raise InvalidState(f"Cannot add round {round_num} while tournament is {t.status.value}")
            return self._insert(t, round_num, matches, byes)


class MemoryUserStore(UserStore):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def get(self, user_id: str) -> Optional[User]:
        with self._b.lock:
            u = self._b.users.get(user_id)
            return copy.deepcopy(u) if u else None

    def save(self, user: User) -> User:
        with self._b.lock:
            self._b.users[user.id] = copy.deepcopy(user)
            return copy.deepcopy(user)


class MemoryStatisticStore(StatisticStore):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def find_by_player_and_tournament(self, player_id, tournament_id):
        with self._b.lock:
            s = self._b.statistics.get((player_id, tournament_id))
            return copy.deepcopy(s) if s else None

    def upsert(self, statistic: Statistic) -> Statistic:
        with self._b.lock:
            key = (statistic.player_id, statistic.tournament_id)
            existing = self._b.statistics.get(key)
            stored = copy.deepcopy(statistic)
            if existing is not None:
                stored.id = existing.id
            stored.updated_at = utc_now()
            self._b.statistics[key] = stored
            return copy.deepcopy(stored)

    def list_by_tournament(self, tournament_id: str) -> List[Statistic]:
        with self._b.lock:
            return [copy.deepcopy(s) for (_, tid), s in self._b.statistics.items() if tid == tournament_id]

    def list_by_player(self, player_id: str) -> List[Statistic]:
        with self._b.lock:
            return [copy.deepcopy(s) for (pid, _), s in self._b.statistics.items() if pid == player_id]


def memory_stores(backend: MemoryBackend = None) -> Stores:
    backend = backend or MemoryBackend()
    return Stores(
        tournaments=MemoryTournamentStore(backend),
        matches=MemoryMatchStore(backend),
        users=MemoryUserStore(backend),
        statistics=MemoryStatisticStore(backend),
    )
