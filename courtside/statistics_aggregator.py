import logging
from typing import Dict, Iterable, List, Optional

from shared.errors import persistence_call
from shared.events import statistics_recomputed_event
from .domain import HOME, Match, MatchStatus, Statistic
from .event_publisher import EventPublisher
from .lookups import load_tournament, load_user
from .stores import Stores
from .validation import require_id

logger = logging.getLogger(__name__)


def tally(player_id: str, tournament_id: str, matches: Iterable[Match]) -> Statistic:
    """
    Fold a player's completed matches into a fresh Statistic.

    Each set goes to the side with strictly more games; the match goes to
    the side that won strictly more sets. Matches the player did not play,
    or that have no recorded score, are ignored.
    """
    stat = Statistic(player_id=player_id, tournament_id=tournament_id)
    for match in matches:
        side = match.side_of(player_id)
        if side is None or match.status != MatchStatus.COMPLETED or not match.score:
            continue

        for s in match.score:
            mine, theirs = (s.home, s.away) if side == HOME else (s.away, s.home)
            stat.games_won += mine
            stat.games_lost += theirs
            if mine > theirs:
                stat.sets_won += 1
            elif theirs > mine:
                stat.sets_lost += 1

        home_sets, away_sets = match.sets_won()
        mine, theirs = (home_sets, away_sets) if side == HOME else (away_sets, home_sets)
        if mine > theirs:
            stat.wins += 1
        elif theirs > mine:
            stat.losses += 1

    played = stat.wins + stat.losses
    stat.winning_percentage = (stat.wins / played * 100) if played > 0 else None
    return stat


def career_totals(stats: Iterable[Statistic]) -> Dict:
    """Sum per-tournament statistics into one record across tournaments."""
    totals = {'tournaments': 0, 'wins': 0, 'losses': 0, 'sets_won': 0, 'sets_lost': 0,
              'games_won': 0, 'games_lost': 0}
    for stat in stats:
        totals['tournaments'] += 1
        for key in ('wins', 'losses', 'sets_won', 'sets_lost', 'games_won', 'games_lost'):
            totals[key] += getattr(stat, key)
    played = totals['wins'] + totals['losses']
    totals['winning_percentage'] = (totals['wins'] / played * 100) if played > 0 else None
    return totals


class StatisticsAggregator:
    """Sole writer of Statistic rows; everything is derived from match history."""

    def __init__(self, stores: Stores, events: EventPublisher = None):
        self.stores = stores
        self.events = events or EventPublisher()

    def _completed_matches(self, tournament_id: str, deadline=None) -> List[Match]:
        return persistence_call(deadline, 'matches.find_by_tournament',
                                self.stores.matches.find_by_tournament,
                                tournament_id, MatchStatus.COMPLETED)

    def _write(self, player_id: str, tournament_id: str, matches: List[Match], deadline=None) -> Statistic:
        stat = tally(player_id, tournament_id, matches)
        return persistence_call(deadline, 'statistics.upsert', self.stores.statistics.upsert, stat)

    def recompute(self, player_id: str, tournament_id: str, deadline=None) -> Statistic:
        """Recompute one player's statistics for a tournament from scratch."""
        player_id = require_id(player_id, 'player_id')
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)

        stat = self._write(player_id, tournament_id, self._completed_matches(tournament_id, deadline), deadline)
        logger.info(
            f"Recomputed statistics for {player_id} in {tournament_id}: "
            f"{stat.wins}W/{stat.losses}L"
        )
        self.events.publish(statistics_recomputed_event(tournament_id, [player_id]))
        return stat

    def recompute_for_match(self, match: Match, deadline=None) -> List[Statistic]:
        """Recompute every player who took part in ``match``."""
        matches = self._completed_matches(match.tournament_id, deadline)
        player_ids = sorted(match.player_ids)
        stats = [self._write(pid, match.tournament_id, matches, deadline) for pid in player_ids]
        logger.info(f"Recomputed statistics for {len(stats)} players after match {match.id}")
        self.events.publish(statistics_recomputed_event(match.tournament_id, player_ids))
        return stats

    def recompute_tournament(self, tournament_id: str, deadline=None) -> List[Statistic]:
        """Recompute every registered participant and every player who appears in a match."""
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)

        player_ids = list(persistence_call(deadline, 'tournaments.list_participants',
                                           self.stores.tournaments.list_participants, tournament_id))
        all_matches = persistence_call(deadline, 'matches.find_by_tournament',
                                       self.stores.matches.find_by_tournament, tournament_id)
        for match in all_matches:
            player_ids.extend(sorted(match.player_ids - set(player_ids)))

        completed = [m for m in all_matches if m.status == MatchStatus.COMPLETED]
        stats = [self._write(pid, tournament_id, completed, deadline) for pid in player_ids]
        logger.info(f"Recomputed statistics for {len(stats)} players in tournament {tournament_id}")
        self.events.publish(statistics_recomputed_event(tournament_id, player_ids))
        return stats

    def get_statistic(self, player_id: str, tournament_id: str, deadline=None) -> Optional[Statistic]:
        player_id = require_id(player_id, 'player_id')
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)
        return persistence_call(deadline, 'statistics.find_by_player_and_tournament',
                                self.stores.statistics.find_by_player_and_tournament,
                                player_id, tournament_id)

    def list_tournament_statistics(self, tournament_id: str, deadline=None) -> List[Statistic]:
        """Stored statistics, best winning percentage first."""
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)
        stats = persistence_call(deadline, 'statistics.list_by_tournament',
                                 self.stores.statistics.list_by_tournament, tournament_id)
        stats.sort(key=lambda s: (s.winning_percentage is not None, s.winning_percentage or 0, s.wins),
                   reverse=True)
        return stats

    def list_player_statistics(self, player_id: str, deadline=None) -> List[Statistic]:
        """A player's statistics in every tournament they have played, most recently updated first."""
        player_id = require_id(player_id, 'player_id')
        load_user(self.stores, player_id, deadline)
        stats = persistence_call(deadline, 'statistics.list_by_player',
                                 self.stores.statistics.list_by_player, player_id)
        stats.sort(key=lambda s: s.updated_at, reverse=True)
        return stats
