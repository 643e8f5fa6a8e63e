"""
Game Manager：管理一場狼人殺遊戲的完整生命週期

職責：
1. 建立遊戲（同一個 guild 同時只能有一場未結束的遊戲）
2. 報名 / 退出
3. 開始、結束遊戲（狀態轉換 + 驗證）
4. 投票、收回投票
5. 查詢遊戲狀態（快取優先）
6. 每場遊戲的處決門檻（votes_to_hang）

原則：
- 寫入一律先寫資料庫，commit 之後才 invalidate 快取
- commit 結果不明（StoreError）時也要 invalidate，快取不能比資料庫舊
- 報名、退出、開始、結束同一場遊戲在 process 內排隊（KeyedLocks）
- 所有業務檢查都在 transaction 內對資料庫重新驗證，不相信快取裡的值
- 所有 status 變更經過 GameStateMachine
"""
import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    AlreadyJoinedError,
    ConflictError,
    DeadPlayerError,
    GameNotFoundError,
    InsufficientPlayersError,
    InvalidStateError,
    NoVoteError,
    NotAPlayerError,
    SelfVoteError,
    StoreError,
    UnknownPlayerError,
)
from core.locks import KeyedLocks
from core.state_cache import StateCache
from core.state_machine import GameStateMachine
from core.store import GameStore, utcnow
from database import transactional
from models import GameStatus
from schemas import GameState, PlayerState, TallyEntry, build_game_state
from services.phase_service import is_voting_open
from services.tally_service import tally_players

logger = logging.getLogger(__name__)


class GameManager:
    """Game 生命週期管理器（外部指令的入口）"""

    def __init__(
        self,
        store: GameStore,
        cache: StateCache,
        locks: Optional[KeyedLocks] = None,
        min_players: int = 3,
    ):
        self.store = store
        self.cache = cache
        self.locks = locks or KeyedLocks()
        self.min_players = min_players

    # ── 查詢 ─────────────────────────────────────────────────────────────────

    async def get_active_game(self, db: AsyncSession, guild_id: int) -> Optional[GameState]:
        """
        取得 guild 目前未結束（setup / signup / active）的遊戲

        快取優先；miss 時讀資料庫並寫回快取

        返回：
            GameState，沒有未結束的遊戲時為 None
        """
        cached = self.cache.get_game(guild_id)
        if cached is not None:
            return cached

        token = self.cache.begin_read(guild_id)
        game = await self.store.load_game(db, guild_id)
        if game is None:
            return None

        players = await self.store.load_players(db, game.game_id)
        state = build_game_state(game, players)
        self.cache.put_game(guild_id, state, token=token)
        return state

    async def refresh(self, db: AsyncSession, guild_id: int) -> Optional[GameState]:
        """丟掉 guild 的快取，重新從資料庫讀取"""
        self.cache.invalidate_game(guild_id)
        return await self.get_active_game(db, guild_id)

    async def get_game(self, db: AsyncSession, game_id: int) -> GameState:
        """
        透過 id 取得遊戲（任何 status，直接讀資料庫）

        異常：
            GameNotFoundError: 遊戲不存在
        """
        game = await self.store.load_game_by_id(db, game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        players = await self.store.load_players(db, game_id)
        return build_game_state(game, players)

    async def list_players(self, db: AsyncSession, game_id: int, alive_only: bool = False) -> List[PlayerState]:
        """
        列出玩家（依 user_id 排序）

        參數：
            alive_only: True 只列活著的玩家
        """
        state = await self.get_game(db, game_id)
        players = state.alive_players if alive_only else state.players
        return list(players)

    async def list_alive_players(self, db: AsyncSession, game_id: int) -> List[PlayerState]:
        return await self.list_players(db, game_id, alive_only=True)

    async def get_vote_tally(self, db: AsyncSession, game_id: int) -> List[TallyEntry]:
        """目前的投票排名（只算活著的玩家投給活著的玩家；標記達到處決門檻的玩家）"""
        state = await self.get_game(db, game_id)
        return tally_players(state.players, state.votes_to_hang)

    @contextmanager
    def _invalidate_on_store_error(self, game_id: int):
        """
        資料庫錯誤時 commit 可能已經生效（例如 commit 逾時），
        這時只知道 game_id，所以讓快取忘掉這場遊戲
        """
        try:
            yield
        except StoreError:
            self.cache.forget_game(game_id)
            raise

    # ── 遊戲生命週期 ─────────────────────────────────────────────────────────

    async def create_game(self, db: AsyncSession, guild_id: int, creator_user_id: int) -> int:
        """
        建立新遊戲

        前置條件：
            guild 沒有未結束的遊戲

        返回：
            新遊戲的 game_id

        異常：
            ConflictError: guild 已經有未結束的遊戲

        注意：
            - 同一個 process 內以 guild 排隊，資料庫的 partial unique index 負責跨 process
        """
        try:
            async with self.locks.guild(guild_id):
                game_id = await self._create_game(db, self.store, guild_id, creator_user_id)
        finally:
            self.cache.invalidate_game(guild_id)
        logger.info(f"Created game {game_id} for guild {guild_id} by user {creator_user_id}")
        return game_id

    @staticmethod
    @transactional
    async def _create_game(db: AsyncSession, store: GameStore, guild_id: int, creator_user_id: int) -> int:
        # 1. 在 transaction 內重新檢查（不看快取）
        existing = await store.load_game(db, guild_id)
        if existing is not None:
            raise ConflictError(guild_id, existing.game_id)

        # 2. 建立 Game，撞到 unique index 代表別的 process 搶先了
        try:
            return await store.insert_game(db, guild_id, creator_user_id)
        except IntegrityError as e:
            raise ConflictError(guild_id) from e

    async def start_game(self, db: AsyncSession, game_id: int) -> GameState:
        """
        開始遊戲（狀態轉換 SIGNUP -> ACTIVE）

        前置條件：
        1. Game 必須存在
        2. Game 狀態必須是 SIGNUP
        3. 玩家數量必須 >= min_players

        效果：
            status=active, day_phase=True, day_number=1

        異常：
            GameNotFoundError, InvalidStateError, InsufficientPlayersError
        """
        with self._invalidate_on_store_error(game_id):
            async with self.locks.game(game_id):
                state = await self._start_game(db, self.store, game_id, self.min_players)
        self.cache.invalidate_game(state.guild_id)
        logger.info(f"Started game {game_id} with {len(state.players)} players")
        return state

    @staticmethod
    @transactional
    async def _start_game(db: AsyncSession, store: GameStore, game_id: int, min_players: int) -> GameState:
        # 1. 取得並鎖定 Game
        game = await store.lock_game(db, game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        if game.status != GameStatus.SIGNUP:
            raise InvalidStateError(f"Game {game_id} is not in signup (status: {game.status.value})")

        # 2. 狀態轉換（之後不會再有人報名）
        game = await GameStateMachine.transition(
            db, store, game_id, GameStatus.ACTIVE,
            day_phase=True, day_number=1, phase_changed_at=utcnow(),
        )

        # 3. 轉換之後才數玩家，人數不足就整個 rollback
        player_count = await store.count_players(db, game_id)
        if player_count < min_players:
            raise InsufficientPlayersError(player_count, min_players)

        players = await store.load_players(db, game_id)
        return build_game_state(game, players)

    async def end_game(self, db: AsyncSession, game_id: int) -> GameState:
        """
        結束遊戲（任何未結束的狀態 -> ENDED）

        效果：
            ended_at 只會在這裡被設定一次

        異常：
            GameNotFoundError: Game 不存在
            InvalidStateError: 已經結束了
        """
        with self._invalidate_on_store_error(game_id):
            async with self.locks.game(game_id):
                state = await self._end_game(db, self.store, game_id)
        self.cache.invalidate_game(state.guild_id)
        logger.info(f"Game {game_id} ended")
        return state

    @staticmethod
    @transactional
    async def _end_game(db: AsyncSession, store: GameStore, game_id: int) -> GameState:
        game = await GameStateMachine.transition(db, store, game_id, GameStatus.ENDED, ended_at=utcnow())
        players = await store.load_players(db, game_id)
        return build_game_state(game, players)

    async def set_votes_to_hang(self, db: AsyncSession, game_id: int, votes_to_hang: int) -> GameState:
        """
        設定處決門檻（白天結束時票數 >= 門檻的玩家會被標記）

        異常：
            ValueError: 門檻不在 1..20 之間
            GameNotFoundError: Game 不存在
            InvalidStateError: 遊戲已經結束
        """
        if not 1 <= votes_to_hang <= 20:
            raise ValueError(f"votes_to_hang must be between 1 and 20, got {votes_to_hang}")

        with self._invalidate_on_store_error(game_id):
            state = await self._set_votes_to_hang(db, self.store, game_id, votes_to_hang)
        self.cache.invalidate_game(state.guild_id)
        logger.info(f"Game {game_id} votes_to_hang set to {votes_to_hang}")
        return state

    @staticmethod
    @transactional
    async def _set_votes_to_hang(db: AsyncSession, store: GameStore, game_id: int, votes_to_hang: int) -> GameState:
        game = await store.lock_game(db, game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        if not await store.set_votes_to_hang(db, game_id, votes_to_hang):
            raise InvalidStateError(f"Game {game_id} has already ended")

        game = await store.load_game_by_id(db, game_id)
        players = await store.load_players(db, game_id)
        return build_game_state(game, players)

    # ── 玩家 ─────────────────────────────────────────────────────────────────

    async def join_game(self, db: AsyncSession, game_id: int, user_id: int) -> None:
        """
        報名遊戲

        異常：
            GameNotFoundError: Game 不存在
            InvalidStateError: 遊戲不在報名階段（包含檢查之後才被開始的情況）
            AlreadyJoinedError: 已經報名過
        """
        with self._invalidate_on_store_error(game_id):
            async with self.locks.game(game_id):
                guild_id = await self._join_game(db, self.store, game_id, user_id)
        self.cache.invalidate_game(guild_id)
        logger.info(f"User {user_id} joined game {game_id}")

    @staticmethod
    @transactional
    async def _join_game(db: AsyncSession, store: GameStore, game_id: int, user_id: int) -> int:
        game = await store.lock_game(db, game_id, shared=True)
        if game is None:
            raise GameNotFoundError(game_id)
        if game.status != GameStatus.SIGNUP:
            raise InvalidStateError(f"Game {game_id} is not accepting players (status: {game.status.value})")

        if await store.load_player(db, game_id, user_id) is not None:
            raise AlreadyJoinedError(game_id, user_id)

        # 寫入時再確認一次還在報名階段（別的 process 可能剛開始遊戲）
        try:
            inserted = await store.insert_player(db, game_id, user_id, expected_status=GameStatus.SIGNUP)
        except IntegrityError as e:
            raise AlreadyJoinedError(game_id, user_id) from e
        if not inserted:
            raise InvalidStateError(f"Game {game_id} stopped accepting players")
        return game.guild_id

    async def leave_game(self, db: AsyncSession, game_id: int, user_id: int) -> None:
        """
        退出遊戲（任何 status 都可以）

        注意：
            其他玩家投給他的票不會被清掉；他不再是活著的玩家，所以不會被計票

        異常：
            GameNotFoundError, NotAPlayerError
        """
        with self._invalidate_on_store_error(game_id):
            async with self.locks.game(game_id):
                guild_id = await self._leave_game(db, self.store, game_id, user_id)
        self.cache.invalidate_game(guild_id)
        logger.info(f"User {user_id} left game {game_id}")

    @staticmethod
    @transactional
    async def _leave_game(db: AsyncSession, store: GameStore, game_id: int, user_id: int) -> int:
        # shared lock：跟開始遊戲（FOR UPDATE）互斥
        game = await store.lock_game(db, game_id, shared=True)
        if game is None:
            raise GameNotFoundError(game_id)
        if not await store.delete_player(db, game_id, user_id):
            raise NotAPlayerError(game_id, user_id)
        return game.guild_id

    async def kill_player(self, db: AsyncSession, game_id: int, user_id: int) -> None:
        """
        主持人處決玩家（標記死亡）

        核心不會自動呼叫這個方法；計票結果要不要處決誰由外層的遊戲規則決定

        效果：
            is_alive=False，並清掉這名玩家自己的投票

        異常：
            GameNotFoundError, InvalidStateError, NotAPlayerError, DeadPlayerError
        """
        with self._invalidate_on_store_error(game_id):
            guild_id = await self._kill_player(db, self.store, game_id, user_id)
        self.cache.invalidate_game(guild_id)
        logger.info(f"Player {user_id} killed in game {game_id}")

    @staticmethod
    @transactional
    async def _kill_player(db: AsyncSession, store: GameStore, game_id: int, user_id: int) -> int:
        game = await store.lock_game(db, game_id, shared=True)
        if game is None:
            raise GameNotFoundError(game_id)
        if game.status != GameStatus.ACTIVE:
            raise InvalidStateError(f"Game {game_id} is not in progress")

        player = await store.load_player(db, game_id, user_id)
        if player is None:
            raise NotAPlayerError(game_id, user_id)
        if not player.is_alive:
            raise DeadPlayerError(user_id)

        await store.set_alive(db, game_id, user_id, False)
        await store.set_vote(db, game_id, user_id, None)
        return game.guild_id

    # ── 投票 ─────────────────────────────────────────────────────────────────

    async def cast_vote(self, db: AsyncSession, game_id: int, voter_id: int, target_id: int) -> None:
        """
        投票（覆蓋之前的投票，一人一票）

        前置條件（依序檢查）：
        1. 遊戲進行中而且是白天
        2. 投票者是玩家而且活著
        3. 不能投給自己
        4. 目標是這場遊戲的玩家，而且活著

        異常：
            GameNotFoundError, InvalidStateError, NotAPlayerError,
            DeadPlayerError, SelfVoteError, UnknownPlayerError

        注意：
            - 不同投票者之間不互斥，各自只改自己那一列
            - 寫入時再確認一次還是同一天的白天，避免票落在剛推進的夜晚
        """
        with self._invalidate_on_store_error(game_id):
            guild_id = await self._cast_vote(db, self.store, game_id, voter_id, target_id)
        self.cache.invalidate_game(guild_id)
        logger.info(f"User {voter_id} voted for {target_id} in game {game_id}")

    @staticmethod
    @transactional
    async def _cast_vote(db: AsyncSession, store: GameStore, game_id: int, voter_id: int, target_id: int) -> int:
        # 1. 檢查階段
        game = await store.lock_game(db, game_id, shared=True)
        if game is None:
            raise GameNotFoundError(game_id)
        if not is_voting_open(game.status, game.day_phase):
            raise InvalidStateError("Voting is only allowed during the day of an active game")

        # 2. 檢查投票者
        voter = await store.load_player(db, game_id, voter_id)
        if voter is None:
            raise NotAPlayerError(game_id, voter_id)
        if not voter.is_alive:
            raise DeadPlayerError(voter_id)

        # 3. 不能投自己
        if voter_id == target_id:
            raise SelfVoteError("You cannot vote for yourself")

        # 4. 檢查目標
        target = await store.load_player(db, game_id, target_id)
        if target is None:
            raise UnknownPlayerError(target_id)
        if not target.is_alive:
            raise DeadPlayerError(target_id)

        # 5. 寫入（條件：仍是同一天的白天）
        applied = await store.set_vote(db, game_id, voter_id, target_id, expected_day_number=game.day_number)
        if not applied:
            raise InvalidStateError("The day ended before the vote was recorded")
        return game.guild_id

    async def retract_vote(self, db: AsyncSession, game_id: int, voter_id: int) -> None:
        """
        收回投票

        異常：
            GameNotFoundError, NotAPlayerError, NoVoteError
        """
        with self._invalidate_on_store_error(game_id):
            guild_id = await self._retract_vote(db, self.store, game_id, voter_id)
        self.cache.invalidate_game(guild_id)
        logger.info(f"User {voter_id} retracted their vote in game {game_id}")

    @staticmethod
    @transactional
    async def _retract_vote(db: AsyncSession, store: GameStore, game_id: int, voter_id: int) -> int:
        game = await store.load_game_by_id(db, game_id)
        if game is None:
            raise GameNotFoundError(game_id)

        voter = await store.load_player(db, game_id, voter_id)
        if voter is None:
            raise NotAPlayerError(game_id, voter_id)
        if voter.votes_for is None:
            raise NoVoteError(voter_id)

        await store.set_vote(db, game_id, voter_id, None)
        return game.guild_id
