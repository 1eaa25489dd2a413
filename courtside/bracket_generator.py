import logging
import math
import random
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from shared.errors import AlreadyGenerated, InsufficientParticipants, UnsupportedFormat, persistence_call
from shared.events import bracket_generated_event
from .domain import Match, Tournament, TournamentFormat
from .event_publisher import EventPublisher
from .stores import Stores

logger = logging.getLogger(__name__)


@dataclass
class BracketResult:
    tournament_id: str
    format: TournamentFormat
    rounds: int
    matches_created: int
    byes: List[str] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)

    def to_dict(self):
        return {
            'tournament_id': self.tournament_id,
            'format': self.format.value,
            'rounds': self.rounds,
            'matches_created': self.matches_created,
            'byes': list(self.byes),
            'matches': [m.to_dict() for m in self.matches],
        }


def bracket_shape(participant_count: int) -> Tuple[int, int, int]:
    """
    Return (rounds, byes, first_round_matches) for a single-elimination draw.

    ``byes`` participants skip round 1; everyone else plays, so round 1 has
    ``(n - byes) / 2`` matches and exactly ``2 ** (rounds - 1)`` players
    reach round 2.
    """
    n = participant_count
    if n < 2:
        raise InsufficientParticipants('Tournament needs at least 2 participants to generate a bracket')
    rounds = math.ceil(math.log2(n))
    byes = 2 ** rounds - n
    return rounds, byes, (n - byes) // 2


def pair_first_round(shuffled: Sequence[str]) -> Tuple[List[str], List[Tuple[str, str]]]:
    """Split an already shuffled list into bye recipients and round-1 pairings."""
    _, byes, _ = bracket_shape(len(shuffled))
    bye_ids = list(shuffled[:byes])
    rest = shuffled[byes:]
    pairs = [(rest[i], rest[i + 1]) for i in range(0, len(rest), 2)]
    return bye_ids, pairs


class BracketGenerator:
    """
    Turns a tournament's participant list into first-round matches.

    The randomness source is injected; anything with a ``shuffle(list)``
    method works, so tests can pass ``random.Random(seed)`` or a stub that
    leaves the order untouched.
    """

    def __init__(self, stores: Stores, rng=None, events: EventPublisher = None):
        self.stores = stores
        self.rng = rng or random.Random()
        self.events = events or EventPublisher()

    def generate(self, tournament: Tournament, participants: Sequence[str] = None, deadline=None) -> BracketResult:
        if tournament.format != TournamentFormat.SINGLE_ELIMINATION:
            raise UnsupportedFormat(f"Tournament format {tournament.format.value} is not supported")

        if participants is None:
            participants = persistence_call(deadline, 'tournaments.list_participants',
                                            self.stores.tournaments.list_participants, tournament.id)
        rounds, _, _ = bracket_shape(len(participants))

        matches_store = self.stores.matches
        if persistence_call(deadline, 'matches.has_any_matches', matches_store.has_any_matches, tournament.id):
            raise AlreadyGenerated(tournament.id)

        shuffled = list(participants)
        self.rng.shuffle(shuffled)
        bye_ids, pairs = pair_first_round(shuffled)

        matches = [Match.pairing(tournament.id, [home], [away]) for home, away in pairs]

        created = persistence_call(deadline, 'matches.insert_first_round',
                                   matches_store.insert_first_round, tournament.id, matches,
                                   [[pid] for pid in bye_ids])

        logger.info(
            f"Generated bracket for {tournament.id}: {len(participants)} participants, "
            f"{rounds} rounds, {len(created)} matches, {len(bye_ids)} byes"
        )
        self.events.publish(bracket_generated_event(tournament.id, rounds, len(created), bye_ids))

        return BracketResult(
            tournament_id=tournament.id,
            format=tournament.format,
            rounds=rounds,
            matches_created=len(created),
            byes=bye_ids,
            matches=created,
        )
