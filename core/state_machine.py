"""
Game 狀態機：集中管理所有 status 轉換

合法的轉換（只能往前，不能倒退）：
    SETUP  -> SIGNUP | ENDED
    SIGNUP -> ACTIVE | ENDED
    ACTIVE -> ENDED
    ENDED  -> （無）
"""
import logging
from typing import Dict, FrozenSet

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import GameNotFoundError, InvalidStateError
from models import Game, GameStatus

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[GameStatus, FrozenSet[GameStatus]] = {
    GameStatus.SETUP: frozenset({GameStatus.SIGNUP, GameStatus.ENDED}),
    GameStatus.SIGNUP: frozenset({GameStatus.ACTIVE, GameStatus.ENDED}),
    GameStatus.ACTIVE: frozenset({GameStatus.ENDED}),
    GameStatus.ENDED: frozenset(),
}


class GameStateMachine:
    """Game status 的唯一入口"""

    @staticmethod
    def can_transition(current: GameStatus, target: GameStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[current]

    @staticmethod
    def validate(current: GameStatus, target: GameStatus) -> None:
        """
        檢查轉換是否合法

        異常：
            InvalidStateError: 不合法的轉換
        """
        if not GameStateMachine.can_transition(current, target):
            raise InvalidStateError(
                f"Cannot transition game from {current.value} to {target.value}"
            )

    @staticmethod
    async def transition(db: AsyncSession, store, game_id: int, target: GameStatus, **fields) -> Game:
        """
        鎖定 Game 並轉換 status

        流程：
        1. 取得並鎖定 Game
        2. 驗證轉換
        3. 條件式更新（status 仍是剛剛讀到的值才會套用）

        參數：
            db: AsyncSession（呼叫端負責 transaction）
            store: GameStore
            game_id: Game id
            target: 目標 status
            fields: 同時要更新的欄位

        返回：
            更新後的 Game

        異常：
            GameNotFoundError: Game 不存在
            InvalidStateError: 不合法的轉換，或 status 被同時修改
        """
        game = await store.lock_game(db, game_id)
        if game is None:
            raise GameNotFoundError(game_id)

        current = game.status
        GameStateMachine.validate(current, target)

        applied = await store.set_game_status(db, game_id, current, target, **fields)
        if not applied:
            raise InvalidStateError(f"Game {game_id} status changed concurrently")

        logger.info(f"Game {game_id} status {current.value} -> {target.value}")
        return await store.load_game_by_id(db, game_id)
