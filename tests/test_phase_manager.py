"""
Tests for PhaseManager: day/night advance, end-of-day tally and racing advances.
"""
import asyncio

import pytest

from core.exceptions import GameNotFoundError, InvalidStateError, StoreTimeoutError
from tests.conftest import GUILD_ID


def ranking_pairs(result):
    return [(e.target_id, e.count) for e in result.elimination_ranking]


class TestAdvance:

    async def test_first_day_ends_with_single_target(self, db, game_manager, phase_manager, active_game):
        await game_manager.cast_vote(db, active_game, 1, 2)
        await game_manager.cast_vote(db, active_game, 3, 2)

        result = await phase_manager.advance_phase(db, active_game)

        assert ranking_pairs(result) == [(2, 2)]
        assert (result.new_day_phase, result.new_day_number) == (False, 1)
        assert await game_manager.get_vote_tally(db, active_game) == []

        result = await phase_manager.advance_phase(db, active_game)

        assert (result.new_day_phase, result.new_day_number) == (True, 2)

    async def test_day_to_night_returns_tally_and_clears_votes(
        self, db, game_manager, phase_manager, active_game
    ):
        await game_manager.cast_vote(db, active_game, 1, 2)
        await game_manager.cast_vote(db, active_game, 3, 2)
        await game_manager.cast_vote(db, active_game, 2, 1)

        result = await phase_manager.advance_phase(db, active_game)

        assert result.applied is True
        assert (result.new_day_phase, result.new_day_number) == (False, 1)
        assert ranking_pairs(result) == [(2, 2), (1, 1)]

        state = await game_manager.get_game(db, active_game)
        assert (state.day_phase, state.day_number) == (False, 1)
        assert all(p.votes_for is None for p in state.players)

    async def test_night_to_day_increments_day(self, db, phase_manager, active_game):
        await phase_manager.advance_phase(db, active_game)

        result = await phase_manager.advance_phase(db, active_game)

        assert result.applied is True
        assert (result.new_day_phase, result.new_day_number) == (True, 2)
        assert result.elimination_ranking == []

    async def test_day_without_votes_gives_empty_ranking(self, db, phase_manager, active_game):
        result = await phase_manager.advance_phase(db, active_game)

        assert result.applied is True
        assert result.elimination_ranking == []

    async def test_tie_ranked_by_user_id(self, db, game_manager, phase_manager, active_game):
        await game_manager.cast_vote(db, active_game, 1, 3)
        await game_manager.cast_vote(db, active_game, 3, 2)

        result = await phase_manager.advance_phase(db, active_game)

        assert ranking_pairs(result) == [(2, 1), (3, 1)]

    async def test_dead_votes_excluded_from_ranking(self, db, game_manager, phase_manager, active_game):
        await game_manager.cast_vote(db, active_game, 1, 2)
        await game_manager.cast_vote(db, active_game, 2, 3)
        await game_manager.cast_vote(db, active_game, 3, 2)
        await game_manager.kill_player(db, active_game, 3)

        result = await phase_manager.advance_phase(db, active_game)

        # 玩家 3 死了：他的票作廢，投給他的票也不算
        assert ranking_pairs(result) == [(2, 1)]

    async def test_full_cycle(self, db, game_manager, phase_manager, active_game):
        await game_manager.cast_vote(db, active_game, 1, 2)
        await phase_manager.advance_phase(db, active_game)
        await phase_manager.advance_phase(db, active_game)

        await game_manager.cast_vote(db, active_game, 2, 3)
        result = await phase_manager.advance_phase(db, active_game)

        assert (result.new_day_phase, result.new_day_number) == (False, 2)
        assert ranking_pairs(result) == [(3, 1)]

    async def test_advance_requires_active_game(self, db, phase_manager, signup_game):
        with pytest.raises(InvalidStateError):
            await phase_manager.advance_phase(db, signup_game)

    async def test_advance_after_end_rejected(self, db, game_manager, phase_manager, active_game):
        await game_manager.end_game(db, active_game)

        with pytest.raises(InvalidStateError):
            await phase_manager.advance_phase(db, active_game)

    async def test_advance_unknown_game(self, db, phase_manager):
        with pytest.raises(GameNotFoundError):
            await phase_manager.advance_phase(db, 999)

    async def test_advance_invalidates_cache(self, db, game_manager, phase_manager, cache, active_game):
        await game_manager.get_active_game(db, GUILD_ID)
        assert cache.get_game(GUILD_ID) is not None

        await phase_manager.advance_phase(db, active_game)

        assert cache.get_game(GUILD_ID) is None
        state = await game_manager.get_active_game(db, GUILD_ID)
        assert state.day_phase is False


class TestStaleAdvance:

    async def test_stale_expectation_not_applied(self, db, phase_manager, active_game):
        await phase_manager.advance_phase(db, active_game)

        result = await phase_manager.advance_phase(
            db, active_game, expected_day_phase=True, expected_day_number=1
        )

        assert result.applied is False
        assert (result.new_day_phase, result.new_day_number) == (False, 1)
        assert result.elimination_ranking == []

    async def test_stale_advance_keeps_new_day_votes(self, db, game_manager, phase_manager, active_game):
        await phase_manager.advance_phase(db, active_game)
        await phase_manager.advance_phase(db, active_game)
        await game_manager.cast_vote(db, active_game, 1, 2)

        result = await phase_manager.advance_phase(
            db, active_game, expected_day_phase=True, expected_day_number=1
        )

        assert result.applied is False
        state = await game_manager.get_game(db, active_game)
        assert state.get_player(1).votes_for == 2

    async def test_concurrent_advances_apply_once(
        self, session_factory, game_manager, phase_manager, active_game
    ):
        async with session_factory() as db:
            await game_manager.cast_vote(db, active_game, 1, 2)

        async def advance():
            async with session_factory() as session:
                return await phase_manager.advance_phase(
                    session, active_game, expected_day_phase=True, expected_day_number=1
                )

        results = await asyncio.gather(advance(), advance())

        applied = [r for r in results if r.applied]
        skipped = [r for r in results if not r.applied]
        assert len(applied) == 1
        assert len(skipped) == 1
        assert ranking_pairs(applied[0]) == [(2, 1)]
        assert (skipped[0].new_day_phase, skipped[0].new_day_number) == (False, 1)

        async with session_factory() as db:
            state = await game_manager.get_game(db, active_game)
        assert (state.day_phase, state.day_number) == (False, 1)


class TestVotesToHang:

    async def test_ranking_flags_entries_at_threshold(self, db, game_manager, phase_manager, active_game):
        await game_manager.set_votes_to_hang(db, active_game, 2)
        await game_manager.cast_vote(db, active_game, 1, 2)
        await game_manager.cast_vote(db, active_game, 3, 2)
        await game_manager.cast_vote(db, active_game, 2, 1)

        result = await phase_manager.advance_phase(db, active_game)

        assert result.votes_to_hang == 2
        assert [(e.target_id, e.reached_threshold) for e in result.elimination_ranking] == [(2, True), (1, False)]

    async def test_default_threshold_not_reached(self, db, game_manager, phase_manager, active_game):
        await game_manager.cast_vote(db, active_game, 1, 2)
        await game_manager.cast_vote(db, active_game, 3, 2)

        result = await phase_manager.advance_phase(db, active_game)

        assert result.votes_to_hang == 4
        assert not any(e.reached_threshold for e in result.elimination_ranking)

    async def test_threshold_does_not_kill(self, db, game_manager, phase_manager, active_game):
        await game_manager.set_votes_to_hang(db, active_game, 1)
        await game_manager.cast_vote(db, active_game, 1, 2)

        await phase_manager.advance_phase(db, active_game)

        state = await game_manager.get_game(db, active_game)
        assert state.get_player(2).is_alive is True


class TestStoreErrors:

    async def test_commit_timeout_forgets_cached_state(
        self, db, game_manager, phase_manager, store, cache, active_game, monkeypatch
    ):
        await game_manager.get_active_game(db, GUILD_ID)
        assert cache.get_game(GUILD_ID) is not None

        async def commit_timed_out(*args, **kwargs):
            raise StoreTimeoutError(5.0)

        monkeypatch.setattr(store, "transition_phase", commit_timed_out)

        with pytest.raises(StoreTimeoutError):
            await phase_manager.advance_phase(db, active_game)

        assert cache.get_game(GUILD_ID) is None
