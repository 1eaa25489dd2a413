"""
Unit tests for StatisticsAggregator and tally.
"""
import pytest

from courtside.domain import Match, MatchStatus, SetScore, Statistic, Tournament
from courtside.statistics_aggregator import StatisticsAggregator, career_totals, tally
from courtside.validation import new_id
from shared.errors import NotFound
from shared.state_machine import TournamentState


def _completed(tournament_id, home, away, sets, status=MatchStatus.COMPLETED):
    return Match(
        id=new_id(),
        tournament_id=tournament_id,
        home_player_ids=home,
        away_player_ids=away,
        status=status,
        score=[SetScore(h, a) for h, a in sets],
    )


@pytest.fixture
def tournament(stores):
    """An OPEN tournament, so players can be registered straight through the store."""
    t = stores.tournaments.save(Tournament(id=new_id(), name='Stats Open', created_by=new_id()))
    return stores.tournaments.transition_status(t.id, TournamentState.DRAFT, TournamentState.OPEN)


@pytest.fixture
def aggregator(stores):
    return StatisticsAggregator(stores)


class TestTally:
    """Tests for the pure tally function."""

    def test_empty_history(self):
        """No matches: zero counts and no winning percentage."""
        stat = tally('p1', 't1', [])
        assert (stat.wins, stat.losses) == (0, 0)
        assert stat.winning_percentage is None
        assert stat.matches_played == 0

    def test_sets_and_games(self):
        m = _completed('t1', ['p1'], ['p2'], [(6, 4), (3, 6), (7, 5)])
        home = tally('p1', 't1', [m])
        away = tally('p2', 't1', [m])

        assert (home.wins, home.losses) == (1, 0)
        assert (home.sets_won, home.sets_lost) == (2, 1)
        assert (home.games_won, home.games_lost) == (16, 15)
        assert home.winning_percentage == 100.0

        assert (away.wins, away.losses) == (0, 1)
        assert (away.sets_won, away.sets_lost) == (1, 2)
        assert (away.games_won, away.games_lost) == (15, 16)
        assert away.winning_percentage == 0.0

    def test_winning_percentage(self):
        matches = [
            _completed('t1', ['p1'], ['p2'], [(6, 0), (6, 0)]),
            _completed('t1', ['p3'], ['p1'], [(6, 1), (6, 1)]),
            _completed('t1', ['p1'], ['p4'], [(6, 2), (6, 2)]),
        ]
        stat = tally('p1', 't1', matches)
        assert (stat.wins, stat.losses) == (2, 1)
        assert stat.winning_percentage == pytest.approx(66.666, rel=1e-3)

    def test_doubles_credit_both_partners(self):
        m = _completed('t1', ['p1', 'p2'], ['p3', 'p4'], [(4, 6), (4, 6)])
        for pid in ('p1', 'p2'):
            assert tally(pid, 't1', [m]).losses == 1
        for pid in ('p3', 'p4'):
            assert tally(pid, 't1', [m]).wins == 1

    def test_ignores_other_players_and_unfinished_matches(self):
        matches = [
            _completed('t1', ['p2'], ['p3'], [(6, 0), (6, 0)]),
            _completed('t1', ['p1'], ['p3'], [(6, 0), (6, 0)], status=MatchStatus.IN_PROGRESS),
            Match(id=new_id(), tournament_id='t1', home_player_ids=['p1'], away_player_ids=['p4'],
                  status=MatchStatus.COMPLETED),
        ]
        stat = tally('p1', 't1', matches)
        assert stat.matches_played == 0
        assert stat.winning_percentage is None


class TestRecompute:
    """Tests for StatisticsAggregator.recompute."""

    def test_empty_history_writes_row(self, aggregator, stores, tournament):
        player = new_id()
        stat = aggregator.recompute(player, tournament.id)
        assert stat.winning_percentage is None
        assert stores.statistics.find_by_player_and_tournament(player, tournament.id) is not None

    def test_reads_completed_matches_from_store(self, aggregator, stores, tournament):
        p1, p2 = new_id(), new_id()
        stores.matches.save(_completed(tournament.id, [p1], [p2], [(6, 3), (6, 4)]))
        stat = aggregator.recompute(p1, tournament.id)
        assert (stat.wins, stat.sets_won, stat.games_won) == (1, 2, 12)

    def test_idempotent(self, aggregator, stores, tournament):
        """Recomputing twice replaces the row instead of adding to it."""
        p1, p2 = new_id(), new_id()
        stores.matches.save(_completed(tournament.id, [p1], [p2], [(6, 3), (6, 4)]))
        first = aggregator.recompute(p1, tournament.id)
        second = aggregator.recompute(p1, tournament.id)
        assert second.id == first.id
        assert second.wins == 1
        assert len(stores.statistics.list_by_tournament(tournament.id)) == 1

    def test_missing_tournament(self, aggregator):
        with pytest.raises(NotFound):
            aggregator.recompute(new_id(), new_id())


class TestRecomputeTournament:
    """Tests for recompute_tournament, recompute_for_match and listing."""

    def test_covers_participants_and_match_players(self, aggregator, stores, tournament):
        registered, outsider, opponent = new_id(), new_id(), new_id()
        stores.tournaments.register_participant(tournament.id, registered)
        stores.matches.save(_completed(tournament.id, [outsider], [opponent], [(6, 1), (6, 1)]))

        stats = aggregator.recompute_tournament(tournament.id)
        assert {s.player_id for s in stats} == {registered, outsider, opponent}

    def test_recompute_for_match(self, aggregator, stores, tournament):
        home, away = [new_id(), new_id()], [new_id(), new_id()]
        match = stores.matches.save(_completed(tournament.id, home, away, [(6, 1), (6, 1)]))
        stats = aggregator.recompute_for_match(match)
        assert len(stats) == 4
        assert sorted(s.wins for s in stats) == [0, 0, 1, 1]

    def test_list_sorted_by_percentage(self, aggregator, stores, tournament):
        p1, p2, p3 = new_id(), new_id(), new_id()
        stores.tournaments.register_participant(tournament.id, p3)
        stores.matches.save(_completed(tournament.id, [p1], [p2], [(6, 1), (6, 1)]))
        aggregator.recompute_tournament(tournament.id)

        listed = aggregator.list_tournament_statistics(tournament.id)
        assert [s.player_id for s in listed] == [p1, p2, p3]
        assert listed[-1].winning_percentage is None

    def test_get_statistic(self, aggregator, tournament):
        player = new_id()
        assert aggregator.get_statistic(player, tournament.id) is None
        aggregator.recompute(player, tournament.id)
        assert aggregator.get_statistic(player, tournament.id).player_id == player


class TestPlayerStatistics:
    """Tests for list_player_statistics and career_totals."""

    def test_spans_tournaments(self, aggregator, stores, tournament, players):
        player, rival = players[0].id, players[1].id
        other = stores.tournaments.save(Tournament(id=new_id(), name='Autumn Open', created_by=new_id()))
        stores.matches.save(_completed(tournament.id, [player], [rival], [(6, 1), (6, 1)]))
        stores.matches.save(_completed(other.id, [rival], [player], [(6, 4), (6, 4)]))
        aggregator.recompute(player, tournament.id)
        aggregator.recompute(player, other.id)

        stats = aggregator.list_player_statistics(player)
        assert {s.tournament_id for s in stats} == {tournament.id, other.id}
        assert all(s.player_id == player for s in stats)

        totals = career_totals(stats)
        assert totals['tournaments'] == 2
        assert (totals['wins'], totals['losses']) == (1, 1)
        assert (totals['games_won'], totals['games_lost']) == (20, 14)
        assert totals['winning_percentage'] == 50.0

    def test_player_without_statistics(self, aggregator, players):
        assert aggregator.list_player_statistics(players[0].id) == []
        assert career_totals([])['winning_percentage'] is None

    def test_unknown_player(self, aggregator):
        with pytest.raises(NotFound):
            aggregator.list_player_statistics(new_id())

    def test_totals_from_rows(self):
        stats = [Statistic(player_id='p1', tournament_id='t1', wins=3, losses=1, sets_won=6, sets_lost=3),
                 Statistic(player_id='p1', tournament_id='t2', wins=0, losses=1, sets_won=1, sets_lost=2)]
        totals = career_totals(stats)
        assert (totals['wins'], totals['losses'], totals['sets_won'], totals['sets_lost']) == (3, 2, 7, 5)
        assert totals['winning_percentage'] == 60.0
