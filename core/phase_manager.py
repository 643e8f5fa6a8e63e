"""
Phase Manager：推進日夜階段（核心！）

白天 -> 夜晚：
    1. 在清票「之前」計票，結果就是當天的處決排名（票數 >= votes_to_hang 的玩家會被標記）
    2. 清掉整場遊戲的投票
    3. day_phase=False，day_number 不變
夜晚 -> 白天：
    day_phase=True，day_number + 1，不處理任何投票

**原子性**：
    計票、清票、更新階段在同一個 transaction 內完成，
    而且階段更新是 compare-and-swap：
        UPDATE games SET ... WHERE game_id=? AND day_phase=? AND day_number=?
    CAS 沒有套用就不清票，所以不可能出現「票清了但階段沒變」或反過來的狀態

**並發安全**：
    - 同一個 game 的推進在 process 內排隊（KeyedLocks），資料庫端再用 FOR UPDATE
    - 呼叫端看到的階段（expected）跟鎖定後重新讀到的不同 = 別人已經推進過了，
      這不是錯誤：回傳目前的狀態，applied=False
    - commit 之後無條件 invalidate 快取
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import GameNotFoundError, InvalidStateError, StoreError
from core.locks import KeyedLocks
from core.state_cache import StateCache
from core.store import GameStore
from database import transactional
from models import GameStatus
from schemas import AdvanceResult
from services.phase_service import next_phase
from services.tally_service import tally_players

logger = logging.getLogger(__name__)


class PhaseManager:
    """日夜階段的狀態機"""

    def __init__(self, store: GameStore, cache: StateCache, locks: Optional[KeyedLocks] = None):
        self.store = store
        self.cache = cache
        self.locks = locks or KeyedLocks()

    async def advance_phase(
        self,
        db: AsyncSession,
        game_id: int,
        expected_day_phase: Optional[bool] = None,
        expected_day_number: Optional[int] = None,
    ) -> AdvanceResult:
        """
        推進到下一個階段

        參數：
            game_id: Game id
            expected_day_phase / expected_day_number:
                呼叫端認為目前所在的階段。沒給的話，用進入排隊「之前」讀到的階段，
                所以兩個同時送出的推進指令只會有一個生效

        返回：
            AdvanceResult
            - applied=True：這次呼叫推進了階段，elimination_ranking 是白天的計票結果
            - applied=False：別人先推進了，回傳目前的階段，排名為空

        異常：
            GameNotFoundError: Game 不存在
            InvalidStateError: 遊戲不是進行中
        """
        # 1. 記下呼叫端看到的階段（排隊之前）
        if expected_day_phase is None or expected_day_number is None:
            observed = await self.store.load_game_by_id(db, game_id)
            if observed is None:
                raise GameNotFoundError(game_id)
            if expected_day_phase is None:
                expected_day_phase = observed.day_phase
            if expected_day_number is None:
                expected_day_number = observed.day_number

        # 2. 同一個 game 排隊，在 transaction 內重新讀取並套用
        try:
            async with self.locks.game(game_id):
                result, guild_id = await self._apply_transition(
                    db, self.store, game_id, expected_day_phase, expected_day_number
                )
        except StoreError:
            # commit 結果不明，只知道 game_id
            self.cache.forget_game(game_id)
            raise

        # 3. commit 之後才 invalidate（不論有沒有套用）
        self.cache.invalidate_game(guild_id)

        if result.applied:
            logger.info(
                f"Game {game_id} advanced to {'day' if result.new_day_phase else 'night'} "
                f"{result.new_day_number} ({len(result.elimination_ranking)} voted targets)"
            )
        else:
            logger.warning(
                f"Game {game_id} phase advance lost a race; current phase is "
                f"{'day' if result.new_day_phase else 'night'} {result.new_day_number}"
            )
        return result

    @staticmethod
    @transactional
    async def _apply_transition(
        db: AsyncSession,
        store: GameStore,
        game_id: int,
        expected_day_phase: bool,
        expected_day_number: int,
    ) -> Tuple[AdvanceResult, int]:
        # 1. 取得並鎖定 Game
        game = await store.lock_game(db, game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        if game.status != GameStatus.ACTIVE:
            raise InvalidStateError(f"Game {game_id} is not in progress (status: {game.status.value})")

        # 2. 已經被推進過了
        if (game.day_phase, game.day_number) != (expected_day_phase, expected_day_number):
            return _current(game), game.guild_id

        new_day_phase, new_day_number = next_phase(game.day_phase, game.day_number)

        # 3. 白天結束：先計票
        ranking = []
        if game.day_phase:
            players = await store.load_players(db, game_id)
            ranking = tally_players(players, game.votes_to_hang)

        # 4. CAS 更新階段
        applied = await store.transition_phase(
            db, game_id,
            expected_day_phase=game.day_phase,
            expected_day_number=game.day_number,
            new_day_phase=new_day_phase,
            new_day_number=new_day_number,
        )
        if not applied:
            current = await store.load_game_by_id(db, game_id)
            return _current(current), game.guild_id

        # 5. CAS 成功才清票
        if game.day_phase:
            cleared = await store.clear_votes(db, game_id)
            logger.debug(f"Cleared {cleared} votes in game {game_id}")

        result = AdvanceResult(
            game_id=game_id,
            applied=True,
            new_day_phase=new_day_phase,
            new_day_number=new_day_number,
            votes_to_hang=game.votes_to_hang,
            elimination_ranking=ranking,
        )
        return result, game.guild_id


def _current(game) -> AdvanceResult:
    return AdvanceResult(
        game_id=game.game_id,
        applied=False,
        new_day_phase=game.day_phase,
        new_day_number=game.day_number,
        votes_to_hang=game.votes_to_hang,
        elimination_ranking=[],
    )
