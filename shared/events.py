from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List
import json


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_UPDATED = "tournament.updated"
    STATE_CHANGED = "state.changed"
    START_COMPENSATED = "tournament.start_compensated"

    # Registrations
    PARTICIPANT_REGISTERED = "participant.registered"
    PARTICIPANT_UNREGISTERED = "participant.unregistered"

    # Bracket and matches
    BRACKET_GENERATED = "bracket.generated"
    ROUND_GENERATED = "round.generated"
    MATCH_UPDATED = "match.updated"
    MATCH_RESULT = "match.result"

    # Derived data
    STATISTICS_RECOMPUTED = "statistics.recomputed"


@dataclass
class Event:
    type: EventType
    tournament_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            tournament_id=data["tournament_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def tournament_created_event(tournament_id: str, name: str, tournament_format: str) -> Event:
    return Event(
        type=EventType.TOURNAMENT_CREATED,
        tournament_id=tournament_id,
        data={"name": name, "format": tournament_format}
    )


def tournament_updated_event(tournament_id: str, fields: List[str]) -> Event:
    return Event(
        type=EventType.TOURNAMENT_UPDATED,
        tournament_id=tournament_id,
        data={"fields": sorted(fields)}
    )


def state_changed_event(tournament_id: str, from_state: str, to_state: str, action: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_state": from_state,
            "to_state": to_state,
            "action": action
        }
    )


def start_compensated_event(tournament_id: str, reason: str) -> Event:
    return Event(
        type=EventType.START_COMPENSATED,
        tournament_id=tournament_id,
        data={"reason": reason}
    )


def participant_event(tournament_id: str, player_id: str, registered: bool) -> Event:
    return Event(
        type=EventType.PARTICIPANT_REGISTERED if registered else EventType.PARTICIPANT_UNREGISTERED,
        tournament_id=tournament_id,
        data={"player_id": player_id}
    )


def bracket_generated_event(tournament_id: str, rounds: int, matches_created: int, byes: List[str]) -> Event:
    return Event(
        type=EventType.BRACKET_GENERATED,
        tournament_id=tournament_id,
        data={
            "rounds": rounds,
            "matches_created": matches_created,
            "byes": list(byes)
        }
    )


def round_generated_event(tournament_id: str, round_num: int, matches_created: int, byes: List[List[str]]) -> Event:
    return Event(
        type=EventType.ROUND_GENERATED,
        tournament_id=tournament_id,
        data={
            "round": round_num,
            "matches_created": matches_created,
            "byes": [list(side) for side in byes]
        }
    )


def match_updated_event(tournament_id: str, match_id: str, status: str) -> Event:
    return Event(
        type=EventType.MATCH_UPDATED,
        tournament_id=tournament_id,
        data={"match_id": match_id, "status": status}
    )


def match_result_event(tournament_id: str, match_id: str, winners: List[str], round_num: int) -> Event:
    return Event(
        type=EventType.MATCH_RESULT,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "winners": list(winners),
            "round": round_num
        }
    )


def statistics_recomputed_event(tournament_id: str, player_ids: List[str]) -> Event:
    return Event(
        type=EventType.STATISTICS_RECOMPUTED,
        tournament_id=tournament_id,
        data={"player_ids": list(player_ids)}
    )
