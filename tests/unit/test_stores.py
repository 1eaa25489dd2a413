"""
Contract tests run against both store implementations: the in-memory
reference stores and the Flask-SQLAlchemy stores (SQLite in memory).
"""
import pytest

from courtside.domain import BracketState, Match, MatchStatus, SetScore, Statistic, Tournament, User, UserRole
from courtside.stores import memory_stores
from courtside.validation import new_id
from shared.errors import AlreadyGenerated, CapacityExceeded, DuplicateRegistration, InvalidState, NotFound
from shared.state_machine import TournamentState


@pytest.fixture(params=['memory', 'sql'])
def store_set(request):
    if request.param == 'memory':
        return memory_stores()
    request.getfixturevalue('db_session')
    from courtside.stores.sql import sql_stores
    return sql_stores()


def _tournament(stores, **kwargs):
    return stores.tournaments.save(Tournament(id=new_id(), name='Store Cup', created_by=new_id(), **kwargs))


def _opened(stores, **kwargs):
    t = _tournament(stores, **kwargs)
    return stores.tournaments.transition_status(t.id, TournamentState.DRAFT, TournamentState.OPEN)


def _awaiting_bracket(stores, **kwargs):
    t = _opened(stores, **kwargs)
    return stores.tournaments.transition_status(
        t.id, TournamentState.OPEN, TournamentState.ACTIVE, BracketState.PENDING
    )


def _match(tournament_id, round_num=1):
    return Match(id=new_id(), tournament_id=tournament_id,
                 home_player_ids=[new_id()], away_player_ids=[new_id()], round_num=round_num)


class TestTournamentStore:
    """Tests for TournamentStore implementations."""

    def test_save_and_get(self, store_set):
        t = _tournament(store_set, max_participants=8, description='Hard courts')
        loaded = store_set.tournaments.get(t.id)
        assert loaded.name == 'Store Cup'
        assert loaded.description == 'Hard courts'
        assert loaded.status == TournamentState.DRAFT
        assert loaded.bracket_state == BracketState.NONE
        assert loaded.byes == {}
        assert loaded.created_at.tzinfo is not None

    def test_get_missing(self, store_set):
        assert store_set.tournaments.get(new_id()) is None

    def test_save_does_not_change_status(self, store_set):
        t = _tournament(store_set)
        store_set.tournaments.transition_status(t.id, TournamentState.DRAFT, TournamentState.OPEN)
        t.name = 'Renamed'
        saved = store_set.tournaments.save(t)
        assert saved.name == 'Renamed'
        assert saved.status == TournamentState.OPEN

    def test_save_with_expected_status(self, store_set):
        t = _tournament(store_set)
        t.name = 'Draft Edit'
        assert store_set.tournaments.save(t, TournamentState.DRAFT).name == 'Draft Edit'

        store_set.tournaments.transition_status(t.id, TournamentState.DRAFT, TournamentState.OPEN)
        t.name = 'Late Edit'
        assert store_set.tournaments.save(t, TournamentState.DRAFT) is None
        assert store_set.tournaments.get(t.id).name == 'Draft Edit'

    def test_compare_and_swap(self, store_set):
        t = _tournament(store_set)
        swapped = store_set.tournaments.transition_status(
            t.id, TournamentState.DRAFT, TournamentState.OPEN, BracketState.NONE
        )
        assert swapped.status == TournamentState.OPEN
        assert swapped.version == t.version + 1

        assert store_set.tournaments.transition_status(t.id, TournamentState.DRAFT, TournamentState.CANCELLED) is None
        assert store_set.tournaments.get(t.id).status == TournamentState.OPEN

    def test_swap_sets_bracket_state(self, store_set):
        t = _tournament(store_set)
        store_set.tournaments.transition_status(t.id, TournamentState.DRAFT, TournamentState.OPEN)
        updated = store_set.tournaments.transition_status(
            t.id, TournamentState.OPEN, TournamentState.ACTIVE, BracketState.PENDING
        )
        assert updated.bracket_state == BracketState.PENDING

    def test_swap_checks_bracket_state(self, store_set):
        t = _awaiting_bracket(store_set)
        assert store_set.tournaments.transition_status(
            t.id, TournamentState.ACTIVE, TournamentState.OPEN, BracketState.FAILED, BracketState.GENERATED
        ) is None
        reverted = store_set.tournaments.transition_status(
            t.id, TournamentState.ACTIVE, TournamentState.OPEN, BracketState.FAILED, BracketState.PENDING
        )
        assert (reverted.status, reverted.bracket_state) == (TournamentState.OPEN, BracketState.FAILED)

    def test_list_filters_and_pages(self, store_set):
        a = _tournament(store_set)
        _tournament(store_set)
        store_set.tournaments.transition_status(a.id, TournamentState.DRAFT, TournamentState.OPEN)
        assert [t.id for t in store_set.tournaments.list(TournamentState.OPEN)] == [a.id]
        assert len(store_set.tournaments.list()) == 2
        assert len(store_set.tournaments.list(limit=1, offset=1)) == 1

    def test_registration(self, store_set):
        t = _opened(store_set, max_participants=2)
        p1, p2, p3 = new_id(), new_id(), new_id()
        store_set.tournaments.register_participant(t.id, p1)
        store_set.tournaments.register_participant(t.id, p2)

        with pytest.raises(DuplicateRegistration):
            store_set.tournaments.register_participant(t.id, p1)
        with pytest.raises(CapacityExceeded):
            store_set.tournaments.register_participant(t.id, p3)

        assert store_set.tournaments.count_participants(t.id) == 2
        assert store_set.tournaments.list_participants(t.id) == [p1, p2]
        assert store_set.tournaments.is_registered(t.id, p2)
        assert not store_set.tournaments.is_registered(t.id, p3)

    def test_registration_requires_open(self, store_set):
        draft = _tournament(store_set)
        with pytest.raises(InvalidState, match="status DRAFT"):
            store_set.tournaments.register_participant(draft.id, new_id())

        active = _awaiting_bracket(store_set, max_participants=4)
        with pytest.raises(InvalidState, match="status ACTIVE"):
            store_set.tournaments.register_participant(active.id, new_id())
        assert store_set.tournaments.count_participants(active.id) == 0

    def test_registration_missing_tournament(self, store_set):
        with pytest.raises(NotFound):
            store_set.tournaments.register_participant(new_id(), new_id())

    def test_unregister_frees_capacity(self, store_set):
        t = _opened(store_set, max_participants=1)
        p1, p2 = new_id(), new_id()
        store_set.tournaments.register_participant(t.id, p1)
        assert store_set.tournaments.unregister_participant(t.id, p1)
        assert not store_set.tournaments.unregister_participant(t.id, p1)
        store_set.tournaments.register_participant(t.id, p2)
        assert store_set.tournaments.list_participants(t.id) == [p2]

    def test_unregister_refused_once_active(self, store_set):
        t = _opened(store_set, max_participants=2)
        p1 = new_id()
        store_set.tournaments.register_participant(t.id, p1)
        store_set.tournaments.transition_status(t.id, TournamentState.OPEN, TournamentState.ACTIVE)

        with pytest.raises(InvalidState, match="Cannot unregister"):
            store_set.tournaments.unregister_participant(t.id, p1)
        assert store_set.tournaments.list_participants(t.id) == [p1]
        assert not store_set.tournaments.unregister_participant(t.id, new_id())


class TestMatchStore:
    """Tests for MatchStore implementations."""

    def test_insert_first_round_once(self, store_set):
        t = _awaiting_bracket(store_set)
        matches = [_match(t.id), _match(t.id)]
        bye = new_id()
        created = store_set.matches.insert_first_round(t.id, matches, [[bye]])

        assert [m.id for m in created] == [m.id for m in matches]
        stored = store_set.tournaments.get(t.id)
        assert stored.bracket_state == BracketState.GENERATED
        assert stored.byes == {1: [[bye]]}
        with pytest.raises(AlreadyGenerated):
            store_set.matches.insert_first_round(t.id, [_match(t.id)])
        assert len(store_set.matches.find_by_tournament(t.id)) == 2

    @pytest.mark.parametrize("revert", [True, False])
    def test_insert_first_round_requires_pending_start(self, store_set, revert):
        """Nothing is inserted once the start was reverted, or before it began."""
        t = _awaiting_bracket(store_set) if revert else _opened(store_set)
        if revert:
            store_set.tournaments.transition_status(
                t.id, TournamentState.ACTIVE, TournamentState.OPEN, BracketState.FAILED
            )
        with pytest.raises(InvalidState, match="not awaiting its bracket"):
            store_set.matches.insert_first_round(t.id, [_match(t.id)])
        assert not store_set.matches.has_any_matches(t.id)
        assert store_set.tournaments.get(t.id).bracket_state != BracketState.GENERATED

    def test_insert_round(self, store_set):
        t = _awaiting_bracket(store_set)
        store_set.matches.insert_first_round(t.id, [_match(t.id), _match(t.id)], [[new_id()]])
        odd = new_id()
        final = _match(t.id, round_num=2)
        store_set.matches.insert_round(t.id, 2, [final], [[odd]])

        assert [m.id for m in store_set.matches.find_by_tournament(t.id, round_num=2)] == [final.id]
        assert store_set.tournaments.get(t.id).byes[2] == [[odd]]
        assert len(store_set.tournaments.get(t.id).byes[1]) == 1
        with pytest.raises(AlreadyGenerated, match="Round 2"):
            store_set.matches.insert_round(t.id, 2, [_match(t.id, round_num=2)])

    def test_insert_round_requires_active(self, store_set):
        t = _awaiting_bracket(store_set)
        store_set.matches.insert_first_round(t.id, [_match(t.id)])
        store_set.tournaments.transition_status(t.id, TournamentState.ACTIVE, TournamentState.CANCELLED)
        with pytest.raises(InvalidState):
            store_set.matches.insert_round(t.id, 2, [_match(t.id, round_num=2)])
        assert store_set.matches.find_by_tournament(t.id, round_num=2) == []

    def test_find_by_tournament_filters(self, store_set):
        t = _awaiting_bracket(store_set)
        first, second = _match(t.id), _match(t.id, round_num=2)
        store_set.matches.insert_first_round(t.id, [first])
        store_set.matches.save(second)

        assert [m.id for m in store_set.matches.find_by_tournament(t.id)] == [first.id, second.id]
        assert [m.id for m in store_set.matches.find_by_tournament(t.id, round_num=2)] == [second.id]
        assert store_set.matches.find_by_tournament(t.id, status=MatchStatus.COMPLETED) == []

    def test_save_round_trips_score(self, store_set):
        t = _tournament(store_set)
        match = _match(t.id)
        match.status = MatchStatus.COMPLETED
        match.score = [SetScore(6, 4), SetScore(7, 6)]
        store_set.matches.save(match)

        loaded = store_set.matches.get(match.id)
        assert loaded.score == [SetScore(6, 4), SetScore(7, 6)]
        assert loaded.winner_ids() == match.home_player_ids
        assert store_set.matches.has_any_matches(t.id)


class TestUserAndStatisticStores:
    """Tests for UserStore and StatisticStore implementations."""

    def test_user_round_trip(self, store_set):
        user = store_set.users.save(User(id=new_id(), display_name='Ana', role=UserRole.ADMIN))
        loaded = store_set.users.get(user.id)
        assert loaded.is_admin
        assert not loaded.can_compete

    def test_statistic_upsert_replaces(self, store_set):
        t = _tournament(store_set)
        player = new_id()
        first = store_set.statistics.upsert(Statistic(player_id=player, tournament_id=t.id, wins=1))
        second = store_set.statistics.upsert(Statistic(player_id=player, tournament_id=t.id, wins=3, losses=1,
                                                       winning_percentage=75.0))
        assert second.id == first.id
        assert (second.wins, second.losses, second.winning_percentage) == (3, 1, 75.0)
        assert len(store_set.statistics.list_by_tournament(t.id)) == 1

    def test_list_by_player(self, store_set):
        a, b = _tournament(store_set), _tournament(store_set)
        player = new_id()
        store_set.statistics.upsert(Statistic(player_id=player, tournament_id=a.id, wins=1))
        store_set.statistics.upsert(Statistic(player_id=player, tournament_id=b.id, losses=1))
        store_set.statistics.upsert(Statistic(player_id=new_id(), tournament_id=a.id))

        rows = store_set.statistics.list_by_player(player)
        assert {s.tournament_id for s in rows} == {a.id, b.id}
        assert store_set.statistics.list_by_player(new_id()) == []
