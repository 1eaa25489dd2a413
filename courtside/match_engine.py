import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from shared.errors import InvalidState, TournamentError, ValidationError, persistence_call
from shared.events import match_result_event, match_updated_event, round_generated_event
from shared.state_machine import TournamentState, TournamentStateMachine
from .domain import Match, MatchStatus, SetScore, utc_now
from .event_publisher import EventPublisher
from .lifecycle import TournamentOrchestrator
from .lookups import load_match, load_tournament
from .statistics_aggregator import StatisticsAggregator
from .stores import Stores
from .validation import ensure_aware, require_id

logger = logging.getLogger(__name__)

POINTS_PER_WIN = 3


def parse_sets(sets) -> List[SetScore]:
    """
    Accept SetScore objects, ``{"home": h, "away": a}`` dicts or ``(h, a)``
    pairs and return a validated, ordered list of SetScore.
    """
    if not sets:
        raise ValidationError("At least one set score is required")

    parsed = []
    for i, s in enumerate(sets, start=1):
        if isinstance(s, SetScore):
            parsed.append(s)
        elif isinstance(s, dict):
            if 'home' not in s or 'away' not in s:
                raise ValidationError(f"Set {i} needs both 'home' and 'away' games")
            parsed.append(SetScore(s['home'], s['away']))
        elif isinstance(s, (list, tuple)) and len(s) == 2:
            parsed.append(SetScore(s[0], s[1]))
        else:
            raise ValidationError(f"Set {i} is not a valid set score")

    for i, s in enumerate(parsed, start=1):
        if s.home == s.away:
            raise ValidationError(f"Set {i} is tied {s.home}-{s.away}; every set needs a winner")

    home_sets = sum(1 for s in parsed if s.home_won)
    away_sets = len(parsed) - home_sets
    if home_sets == away_sets:
        raise ValidationError("A match result needs a strict majority of sets")
    return parsed


@dataclass
class RoundAdvance:
    """Outcome of closing a finished round: either the next round or the final result."""
    tournament_id: str
    round_num: int
    completed: bool = False
    matches: List[Match] = field(default_factory=list)
    byes: List[List[str]] = field(default_factory=list)
    champion_ids: Optional[List[str]] = None

    def to_dict(self):
        return {
            'tournament_id': self.tournament_id,
            'round': self.round_num,
            'completed': self.completed,
            'matches': [m.to_dict() for m in self.matches],
            'byes': [list(side) for side in self.byes],
            'champion': self.champion_ids,
        }


class MatchEngine:
    """Match lifecycle after the first round has been generated, round advancement and read models."""

    def __init__(
        self,
        stores: Stores,
        aggregator: StatisticsAggregator = None,
        events: EventPublisher = None,
        orchestrator: TournamentOrchestrator = None
    ):
        self.stores = stores
        self.events = events or EventPublisher()
        self.aggregator = aggregator or StatisticsAggregator(stores, events=self.events)
        self.orchestrator = orchestrator or TournamentOrchestrator(stores, events=self.events)

    def _load_for_update(self, match_id: str, action: str, deadline=None) -> Match:
        match = load_match(self.stores, require_id(match_id, 'match_id'), deadline)
        tournament = load_tournament(self.stores, match.tournament_id, deadline)
        if not TournamentStateMachine(tournament.status).can_perform(action):
            raise InvalidState(
                f"Cannot {action.replace('_', ' ')} while tournament is {tournament.status.value}"
            )
        return match

    def _save(self, match: Match, deadline=None) -> Match:
        match.updated_at = utc_now()
        saved = persistence_call(deadline, 'matches.save', self.stores.matches.save, match)
        self.events.publish(match_updated_event(saved.tournament_id, saved.id, saved.status.value))
        return saved

    def schedule_match(self, match_id: str, scheduled_at: datetime, location: str = None, deadline=None) -> Match:
        if scheduled_at is None:
            raise ValidationError("scheduled_at is required")
        match = self._load_for_update(match_id, 'schedule_match', deadline)
        if match.status not in (MatchStatus.PENDING, MatchStatus.SCHEDULED):
            raise InvalidState(f"Match {match.id} cannot be scheduled from status {match.status.value}")

        match.scheduled_at = ensure_aware(scheduled_at)
        match.location = location
        match.status = MatchStatus.SCHEDULED
        saved = self._save(match, deadline)
        logger.info(f"Scheduled match {saved.id} at {saved.scheduled_at.isoformat()}")
        return saved

    def start_match(self, match_id: str, deadline=None) -> Match:
        match = self._load_for_update(match_id, 'record_result', deadline)
        if match.status != MatchStatus.SCHEDULED:
            raise InvalidState(f"Only SCHEDULED matches can be started. Current status: {match.status.value}")

        match.status = MatchStatus.IN_PROGRESS
        saved = self._save(match, deadline)
        logger.info(f"Started match {saved.id}")
        return saved

    def record_result(self, match_id: str, sets: Sequence, deadline=None) -> Match:
        """
        Record the set scores of an IN_PROGRESS match, refresh its players'
        statistics and, when this finishes the round, advance the bracket.

        The saved result is returned even if the statistics refresh fails;
        the failure is logged and ``recompute_tournament`` rebuilds them.
        """
        score = parse_sets(sets)
        match = self._load_for_update(match_id, 'record_result', deadline)
        if match.status != MatchStatus.IN_PROGRESS:
            raise InvalidState(
                f"Results can only be recorded for IN_PROGRESS matches. Current status: {match.status.value}"
            )

        match.score = score
        match.status = MatchStatus.COMPLETED
        saved = persistence_call(deadline, 'matches.save', self.stores.matches.save, match)

        winners = saved.winner_ids() or []
        logger.info(f"Recorded result for match {saved.id}: winners {winners}")
        self.events.publish(match_result_event(saved.tournament_id, saved.id, winners, saved.round_num))

        try:
            self.aggregator.recompute_for_match(saved, deadline)
        except TournamentError as e:
            logger.error(f"Statistics refresh failed after match {saved.id}: {e.message}")

        self._advance_if_round_finished(saved, deadline)
        return saved

    def cancel_match(self, match_id: str, deadline=None) -> Match:
        match = load_match(self.stores, require_id(match_id, 'match_id'), deadline)
        if not match.can_modify():
            raise InvalidState(f"Match {match.id} is already {match.status.value}")

        match.status = MatchStatus.CANCELED
        saved = self._save(match, deadline)
        logger.info(f"Canceled match {saved.id}")
        self._advance_if_round_finished(saved, deadline)
        return saved

    def advance_round(self, tournament_id: str, deadline=None) -> RoundAdvance:
        """
        Close the latest round once none of its matches can change.

        Winners advance in match order after the sides that had a bye into
        the round; a canceled match advances nobody. With one side (or none)
        left the tournament is completed, otherwise the next round is paired
        in order and an odd side out gets a bye into the round after.
        """
        tournament_id = require_id(tournament_id, 'tournament_id')
        tournament = load_tournament(self.stores, tournament_id, deadline)
        if not TournamentStateMachine(tournament.status).can_perform('advance_round'):
            raise InvalidState(f"Cannot advance rounds while tournament is {tournament.status.value}")

        matches = persistence_call(deadline, 'matches.find_by_tournament',
                                   self.stores.matches.find_by_tournament, tournament_id)
        if not matches:
            raise InvalidState(f"Tournament {tournament_id} has no bracket yet")

        current = max(m.round_num for m in matches)
        round_matches = [m for m in matches if m.round_num == current]
        unfinished = [m for m in round_matches if m.can_modify()]
        if unfinished:
            raise InvalidState(f"Round {current} still has {len(unfinished)} unfinished matches")

        advancing = [list(side) for side in tournament.byes.get(current, [])]
        advancing += [m.winner_ids() for m in round_matches if m.winner_ids()]

        if len(advancing) <= 1:
            champion = advancing[0] if advancing else None
            self.orchestrator.conclude_tournament(tournament_id, deadline)
            logger.info(f"Tournament {tournament_id} finished after round {current}, champion {champion}")
            return RoundAdvance(tournament_id=tournament_id, round_num=current, completed=True,
                                champion_ids=champion)

        next_round = current + 1
        byes = [advancing.pop()] if len(advancing) % 2 else []
        pairs = [
            Match.pairing(tournament_id, advancing[i], advancing[i + 1], next_round)
            for i in range(0, len(advancing), 2)
        ]
        created = persistence_call(deadline, 'matches.insert_round', self.stores.matches.insert_round,
                                   tournament_id, next_round, pairs, byes)

        logger.info(f"Generated round {next_round} for {tournament_id}: {len(created)} matches, {len(byes)} byes")
        self.events.publish(round_generated_event(tournament_id, next_round, len(created), byes))
        return RoundAdvance(tournament_id=tournament_id, round_num=next_round, matches=created, byes=byes)

    def _advance_if_round_finished(self, match: Match, deadline=None) -> Optional[RoundAdvance]:
        try:
            tournament = load_tournament(self.stores, match.tournament_id, deadline)
            if tournament.status != TournamentState.ACTIVE:
                return None
            siblings = persistence_call(deadline, 'matches.find_by_tournament',
                                        self.stores.matches.find_by_tournament, match.tournament_id)
            if max(m.round_num for m in siblings) != match.round_num:
                return None
            if any(m.can_modify() for m in siblings if m.round_num == match.round_num):
                return None
            return self.advance_round(match.tournament_id, deadline)
        except TournamentError as e:
            logger.warning(f"Could not advance tournament {match.tournament_id} after match {match.id}: {e.message}")
            return None

    def get_bracket(self, tournament_id: str, deadline=None) -> Dict[int, List[Match]]:
        """Matches grouped by round, rounds ascending."""
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)
        matches = persistence_call(deadline, 'matches.find_by_tournament',
                                   self.stores.matches.find_by_tournament, tournament_id)
        bracket: Dict[int, List[Match]] = {}
        for m in sorted(matches, key=lambda m: m.round_num):
            bracket.setdefault(m.round_num, []).append(m)
        return bracket

    def get_standings(self, tournament_id: str, deadline=None) -> List[Dict]:
        tournament_id = require_id(tournament_id, 'tournament_id')
        load_tournament(self.stores, tournament_id, deadline)

        player_ids = list(persistence_call(deadline, 'tournaments.list_participants',
                                           self.stores.tournaments.list_participants, tournament_id))
        matches = persistence_call(deadline, 'matches.find_by_tournament',
                                   self.stores.matches.find_by_tournament, tournament_id)

        records = {pid: {'wins': 0, 'losses': 0} for pid in player_ids}
        for m in matches:
            for pid in m.home_player_ids + m.away_player_ids:
                records.setdefault(pid, {'wins': 0, 'losses': 0})
            winners = m.winner_ids()
            if not winners:
                continue
            for pid in m.home_player_ids + m.away_player_ids:
                records[pid]['wins' if pid in winners else 'losses'] += 1

        standings = []
        for pid, r in records.items():
            total = r['wins'] + r['losses']
            win_rate = (r['wins'] / total * 100) if total > 0 else 0
            standings.append({
                'player_id': pid,
                'matches_played': total,
                'wins': r['wins'],
                'losses': r['losses'],
                'points': r['wins'] * POINTS_PER_WIN,
                'win_rate': round(win_rate, 1)
            })

        # Sort by points desc, then win rate desc
        standings.sort(key=lambda x: (x['points'], x['win_rate']), reverse=True)

        for i, s in enumerate(standings):
            s['rank'] = i + 1

        return standings
