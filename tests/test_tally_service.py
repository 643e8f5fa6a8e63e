"""
Tests for the vote tally (pure, no store or cache).
"""
import itertools

from schemas import PlayerState
from services.tally_service import tally_players, tally_votes


def pairs(ranking):
    return [(entry.target_id, entry.count) for entry in ranking]


class TestTallyVotes:

    def test_no_votes_gives_empty_ranking(self):
        assert tally_votes([1, 2, 3], []) == []

    def test_counts_votes_per_target(self):
        ranking = tally_votes([1, 2, 3], [(1, 2), (3, 2)])

        assert pairs(ranking) == [(2, 2)]
        assert ranking[0].voters == (1, 3)

    def test_sorted_by_count_then_target_id(self):
        alive = [1, 2, 3, 4, 5, 6]
        votes = [(1, 5), (2, 5), (3, 4), (4, 3), (5, 3), (6, 1)]

        assert pairs(tally_votes(alive, votes)) == [(3, 2), (5, 2), (1, 1), (4, 1)]

    def test_ties_broken_by_ascending_target_id(self):
        ranking = tally_votes([1, 2, 3, 4], [(1, 4), (4, 2), (2, 3), (3, 1)])

        assert pairs(ranking) == [(1, 1), (2, 1), (3, 1), (4, 1)]

    def test_invariant_to_vote_order(self):
        alive = [1, 2, 3, 4]
        votes = [(1, 2), (3, 2), (4, 1), (2, 4)]
        expected = tally_votes(alive, votes)

        for permutation in itertools.permutations(votes):
            assert tally_votes(alive, permutation) == expected

    def test_votes_from_dead_players_are_excluded(self):
        ranking = tally_votes([1, 2], [(1, 2), (9, 2), (9, 1)])

        assert pairs(ranking) == [(2, 1)]

    def test_votes_targeting_dead_players_are_excluded(self):
        ranking = tally_votes([1, 2, 3], [(1, 2), (3, 9), (2, 9)])

        assert pairs(ranking) == [(2, 1)]

    def test_dead_votes_do_not_change_result(self):
        alive = [1, 2, 3]
        votes = [(1, 2), (3, 2)]
        noisy = votes + [(7, 2), (8, 2), (1, 7), (3, 8)]

        assert tally_votes(alive, noisy) == tally_votes(alive, votes)

    def test_duplicate_voter_counted_once(self):
        ranking = tally_votes([1, 2], [(1, 2), (1, 2)])

        assert pairs(ranking) == [(2, 1)]

    def test_nothing_flagged_without_threshold(self):
        ranking = tally_votes([1, 2, 3], [(1, 2), (3, 2)])

        assert not any(entry.reached_threshold for entry in ranking)

    def test_entries_at_or_above_threshold_flagged(self):
        ranking = tally_votes([1, 2, 3, 4], [(1, 2), (3, 2), (4, 2), (2, 1)], votes_to_hang=3)

        assert [(e.target_id, e.reached_threshold) for e in ranking] == [(2, True), (1, False)]

    def test_threshold_counts_only_live_votes(self):
        # 玩家 3 死了，他的票不算，只剩 1 票
        ranking = tally_votes([1, 2], [(1, 2), (3, 2)], votes_to_hang=2)

        assert [(e.target_id, e.reached_threshold) for e in ranking] == [(2, False)]


class TestTallyPlayers:

    def test_reads_votes_for_of_each_player(self):
        players = [
            PlayerState(user_id=1, votes_for=2),
            PlayerState(user_id=2, votes_for=None),
            PlayerState(user_id=3, votes_for=2),
        ]

        assert pairs(tally_players(players)) == [(2, 2)]

    def test_dead_player_vote_ignored(self):
        players = [
            PlayerState(user_id=1, votes_for=2),
            PlayerState(user_id=2, votes_for=1),
            PlayerState(user_id=3, is_alive=False, votes_for=1),
        ]

        assert pairs(tally_players(players)) == [(1, 1), (2, 1)]

    def test_vote_for_player_who_left_ignored(self):
        # 玩家 4 已經退出，名單上沒有他
        players = [
            PlayerState(user_id=1, votes_for=4),
            PlayerState(user_id=2, votes_for=1),
        ]

        assert pairs(tally_players(players)) == [(1, 1)]

    def test_threshold_passed_through(self):
        players = [
            PlayerState(user_id=1, votes_for=3),
            PlayerState(user_id=2, votes_for=3),
            PlayerState(user_id=3, votes_for=1),
        ]

        ranking = tally_players(players, votes_to_hang=2)

        assert [(e.target_id, e.reached_threshold) for e in ranking] == [(3, True), (1, False)]
