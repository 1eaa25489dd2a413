"""
Unit tests for ParticipantRegistry.
Tests register, unregister, count and list against the in-memory stores.
"""
from datetime import timedelta

import pytest

from courtside.domain import Tournament, utc_now
from courtside.participant_registry import ParticipantRegistry
from courtside.validation import new_id
from shared.errors import (
    CapacityExceeded,
    Conflict,
    DuplicateRegistration,
    Expired,
    InvalidState,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from shared.state_machine import TournamentState


def _tournament(stores, creator, status=TournamentState.OPEN, **kwargs):
    t = stores.tournaments.save(Tournament(id=new_id(), name='Spring Open', created_by=creator.id, **kwargs))
    if status != TournamentState.DRAFT:
        stores.tournaments.transition_status(t.id, TournamentState.DRAFT, status)
    return stores.tournaments.get(t.id)


class TestRegister:
    """Tests for ParticipantRegistry.register."""

    def test_register_success(self, services, open_tournament, players):
        """Registration adds exactly one participant."""
        count = services.registry.register(open_tournament.id, players[0].id)
        assert count == 1
        assert services.registry.list_participants(open_tournament.id) == [players[0].id]

    def test_malformed_ids(self, services, open_tournament):
        with pytest.raises(ValidationError):
            services.registry.register('not-a-uuid', new_id())
        with pytest.raises(ValidationError):
            services.registry.register(open_tournament.id, '')

    def test_missing_tournament(self, services, players):
        with pytest.raises(NotFound, match="Tournament with ID"):
            services.registry.register(new_id(), players[0].id)

    def test_missing_player(self, services, open_tournament):
        with pytest.raises(NotFound, match="User with ID"):
            services.registry.register(open_tournament.id, new_id())

    def test_admin_cannot_compete(self, services, open_tournament, admin):
        """Only PLAYER users may register."""
        with pytest.raises(PermissionDenied, match="PLAYER role"):
            services.registry.register(open_tournament.id, admin.id)

    def test_duplicate_registration_is_conflict(self, services, open_tournament, players):
        services.registry.register(open_tournament.id, players[0].id)
        with pytest.raises(Conflict):
            services.registry.register(open_tournament.id, players[0].id)
        assert services.registry.count_participants(open_tournament.id) == 1

    @pytest.mark.parametrize("status", [
        TournamentState.DRAFT,
        TournamentState.ACTIVE,
        TournamentState.CANCELLED,
    ])
    def test_requires_open(self, services, stores, creator, players, status):
        if status == TournamentState.ACTIVE:
            t = _tournament(stores, creator, TournamentState.OPEN)
            stores.tournaments.transition_status(t.id, TournamentState.OPEN, TournamentState.ACTIVE)
        else:
            t = _tournament(stores, creator, status)
        with pytest.raises(InvalidState):
            services.registry.register(t.id, players[0].id)
        assert stores.tournaments.count_participants(t.id) == 0

    def test_deadline_passed(self, services, stores, creator, players):
        t = _tournament(stores, creator, registration_deadline=utc_now() - timedelta(minutes=1))
        with pytest.raises(Expired, match="Registration deadline has passed"):
            services.registry.register(t.id, players[0].id)

    def test_capacity(self, services, stores, creator, players):
        """Registration beyond max_participants fails and writes nothing."""
        t = _tournament(stores, creator, max_participants=2)
        services.registry.register(t.id, players[0].id)
        services.registry.register(t.id, players[1].id)
        with pytest.raises(CapacityExceeded):
            services.registry.register(t.id, players[2].id)
        assert services.registry.count_participants(t.id) == 2

    def test_duplicate_checked_before_status(self, services, stores, creator, players, open_tournament):
        """An already registered player gets Conflict even after registration closed."""
        services.registry.register(open_tournament.id, players[0].id)
        stores.tournaments.transition_status(open_tournament.id, TournamentState.OPEN, TournamentState.CANCELLED)
        with pytest.raises(DuplicateRegistration):
            services.registry.register(open_tournament.id, players[0].id)

    def test_store_backstop_on_capacity(self, stores, creator, players, mocker):
        """A stale pre-check still cannot exceed capacity."""
        t = _tournament(stores, creator, max_participants=1)
        stores.tournaments.register_participant(t.id, players[0].id)
        registry = ParticipantRegistry(stores)
        mocker.patch.object(stores.tournaments, 'count_participants', return_value=0)
        with pytest.raises(CapacityExceeded):
            registry.register(t.id, players[1].id)

    def test_store_backstop_on_status(self, stores, creator, players, mocker):
        """A stale OPEN snapshot cannot register into a tournament that has already started."""
        t = _tournament(stores, creator)
        stale = stores.tournaments.get(t.id)
        stores.tournaments.transition_status(t.id, TournamentState.OPEN, TournamentState.ACTIVE)
        mocker.patch.object(stores.tournaments, 'get', return_value=stale)

        with pytest.raises(InvalidState, match="status ACTIVE"):
            ParticipantRegistry(stores).register(t.id, players[0].id)
        assert stores.tournaments.count_participants(t.id) == 0

    def test_publishes_event(self, stores, open_tournament, players, mocker):
        publisher = mocker.MagicMock()
        registry = ParticipantRegistry(stores, events=publisher)
        registry.register(open_tournament.id, players[0].id)
        event = publisher.publish.call_args[0][0]
        assert event.data['player_id'] == players[0].id

    def test_uses_injected_clock(self, stores, creator, players):
        deadline_at = utc_now() + timedelta(hours=1)
        t = _tournament(stores, creator, registration_deadline=deadline_at)
        registry = ParticipantRegistry(stores, clock=lambda: deadline_at + timedelta(seconds=1))
        with pytest.raises(Expired):
            registry.register(t.id, players[0].id)


class TestUnregister:
    """Tests for ParticipantRegistry.unregister."""

    def test_unregister(self, services, open_tournament, players):
        services.registry.register(open_tournament.id, players[0].id)
        services.registry.unregister(open_tournament.id, players[0].id)
        assert services.registry.count_participants(open_tournament.id) == 0

    def test_not_registered(self, services, open_tournament, players):
        with pytest.raises(NotFound):
            services.registry.unregister(open_tournament.id, players[0].id)

    def test_not_after_start(self, services, active_tournament, players):
        """ACTIVE tournaments do not allow unregistration."""
        with pytest.raises(InvalidState):
            services.registry.unregister(active_tournament.id, players[0].id)

    def test_not_after_start_date(self, services, stores, creator, players):
        t = _tournament(stores, creator, start_date=utc_now() - timedelta(hours=1))
        stores.tournaments.register_participant(t.id, players[0].id)
        with pytest.raises(InvalidState, match="after tournament has started"):
            services.registry.unregister(t.id, players[0].id)


class TestListing:
    """Tests for count and list."""

    def test_list_in_registration_order_with_paging(self, services, open_tournament, players, register_players):
        ids = register_players(open_tournament, players[:5])
        assert services.registry.list_participants(open_tournament.id) == ids
        assert services.registry.list_participants(open_tournament.id, limit=2, offset=1) == ids[1:3]
        assert services.registry.count_participants(open_tournament.id) == 5

    def test_list_missing_tournament(self, services):
        with pytest.raises(NotFound):
            services.registry.list_participants(new_id())

    def test_bad_page(self, services, open_tournament):
        with pytest.raises(ValidationError):
            services.registry.list_participants(open_tournament.id, limit=0)
        with pytest.raises(ValidationError):
            services.registry.list_participants(open_tournament.id, offset=-1)
