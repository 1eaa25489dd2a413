from dataclasses import dataclass

from .bracket_generator import BracketGenerator
from .event_publisher import EventPublisher
from .lifecycle import TournamentOrchestrator
from .match_engine import MatchEngine
from .participant_registry import ParticipantRegistry
from .statistics_aggregator import StatisticsAggregator
from .stores import Stores


@dataclass
class Services:
    stores: Stores
    events: EventPublisher
    registry: ParticipantRegistry
    generator: BracketGenerator
    orchestrator: TournamentOrchestrator
    aggregator: StatisticsAggregator
    matches: MatchEngine


def build_services(stores: Stores, events: EventPublisher = None, rng=None) -> Services:
    """Wire every component around one set of stores and one event publisher."""
    events = events or EventPublisher()
    generator = BracketGenerator(stores, rng=rng, events=events)
    aggregator = StatisticsAggregator(stores, events=events)
    orchestrator = TournamentOrchestrator(stores, generator=generator, events=events)
    return Services(
        stores=stores,
        events=events,
        registry=ParticipantRegistry(stores, events=events),
        generator=generator,
        orchestrator=orchestrator,
        aggregator=aggregator,
        matches=MatchEngine(stores, aggregator=aggregator, events=events, orchestrator=orchestrator),
    )
