"""
GameStore：核心對資料庫的最小介面

職責：
- 只負責讀寫資料，不檢查業務規則（由 Manager 負責）
- 不 commit（transaction 邊界由 @transactional 決定）
- 每一次資料庫 round-trip 都有逾時上限

錯誤轉換：
- asyncio.TimeoutError -> StoreTimeoutError
- 連線 / 驅動層錯誤 -> StoreUnavailableError
- IntegrityError 原樣拋出，讓 Manager 轉成業務異常（例如 ConflictError）
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import BigInteger, Boolean, Integer, delete, exists, func, insert, literal, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import StoreTimeoutError, StoreUnavailableError
from core.locks import with_game_lock
from models import OPEN_STATUSES, Game, GamePlayer, GameStatus, ServerConfig

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameStore:
    """SQLAlchemy 實作的 Persistent Store"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def _run(self, awaitable):
        """執行一次資料庫呼叫，套用逾時並轉換基礎設施錯誤"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Store call timed out after {self.timeout}s")
            raise StoreTimeoutError(self.timeout) from e
        except IntegrityError:
            raise
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailableError(str(e)) from e
            raise
        except OSError as e:
            raise StoreUnavailableError(str(e)) from e

    # ── Game ─────────────────────────────────────────────────────────────────

    async def load_game(self, db: AsyncSession, guild_id: int) -> Optional[Game]:
        """取得 guild 目前未結束（setup / signup / active）的遊戲"""
        stmt = (
            select(Game)
            .where(Game.guild_id == guild_id, Game.status.in_(OPEN_STATUSES))
            .order_by(Game.game_id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._run(db.execute(stmt))
        return result.scalar_one_or_none()

    async def load_game_by_id(self, db: AsyncSession, game_id: int) -> Optional[Game]:
        stmt = (
            select(Game)
            .where(Game.game_id == game_id)
            .execution_options(populate_existing=True)
        )
        result = await self._run(db.execute(stmt))
        return result.scalar_one_or_none()

    async def lock_game(self, db: AsyncSession, game_id: int, shared: bool = False) -> Optional[Game]:
        result = await self._run(db.execute(with_game_lock(game_id, shared=shared)))
        return result.scalar_one_or_none()

    async def insert_game(self, db: AsyncSession, guild_id: int, creator_user_id: int) -> int:
        game = Game(
            guild_id=guild_id,
            created_by=creator_user_id,
            status=GameStatus.SIGNUP,
            day_phase=True,
            day_number=0,
        )
        db.add(game)
        await self._run(db.flush())  # 取得 game.game_id
        return game.game_id

    async def set_game_status(
        self,
        db: AsyncSession,
        game_id: int,
        expected_status: GameStatus,
        new_status: GameStatus,
        **fields,
    ) -> bool:
        """
        條件式更新 status（只有目前 status 仍是 expected_status 才會套用）

        參數：
            fields: 同時要更新的其他欄位（例如 ended_at、day_number）

        返回：
            True 如果有套用
        """
        stmt = (
            update(Game)
            .where(Game.game_id == game_id, Game.status == expected_status)
            .values(status=new_status, **fields)
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount == 1

    async def transition_phase(
        self,
        db: AsyncSession,
        game_id: int,
        expected_day_phase: bool,
        expected_day_number: int,
        new_day_phase: bool,
        new_day_number: int,
    ) -> bool:
        """
        日夜階段的 compare-and-swap

        返回：
            True 如果有套用；False 表示別人已經先推進了（不是錯誤）
        """
        stmt = (
            update(Game)
            .where(
                Game.game_id == game_id,
                Game.status == GameStatus.ACTIVE,
                Game.day_phase == expected_day_phase,
                Game.day_number == expected_day_number,
            )
            .values(
                day_phase=new_day_phase,
                day_number=new_day_number,
                phase_changed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount == 1

    async def set_votes_to_hang(self, db: AsyncSession, game_id: int, votes_to_hang: int) -> bool:
        """更新處決門檻（已結束的遊戲不會套用）"""
        stmt = (
            update(Game)
            .where(Game.game_id == game_id, Game.status != GameStatus.ENDED)
            .values(votes_to_hang=votes_to_hang)
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount == 1

    # ── Player ───────────────────────────────────────────────────────────────

    async def load_players(self, db: AsyncSession, game_id: int) -> List[GamePlayer]:
        stmt = (
            select(GamePlayer)
            .where(GamePlayer.game_id == game_id)
            .order_by(GamePlayer.user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._run(db.execute(stmt))
        return list(result.scalars().all())

    async def load_player(self, db: AsyncSession, game_id: int, user_id: int) -> Optional[GamePlayer]:
        stmt = (
            select(GamePlayer)
            .where(GamePlayer.game_id == game_id, GamePlayer.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._run(db.execute(stmt))
        return result.scalar_one_or_none()

    async def count_players(self, db: AsyncSession, game_id: int) -> int:
        stmt = select(func.count()).select_from(GamePlayer).where(GamePlayer.game_id == game_id)
        result = await self._run(db.execute(stmt))
        return result.scalar_one()

    async def insert_player(
        self,
        db: AsyncSession,
        game_id: int,
        user_id: int,
        expected_status: Optional[GameStatus] = None,
    ) -> bool:
        """
        新增一名活著的玩家

        參數：
            expected_status: 提供時，只有遊戲 status 仍是這個值才會寫入
                （INSERT ... SELECT ... WHERE EXISTS），避免報名落在剛開始的遊戲上

        返回：
            True 如果有寫入
        """
        if expected_status is None:
            db.add(GamePlayer(game_id=game_id, user_id=user_id, is_alive=True))
            await self._run(db.flush())
            return True

        rows = select(
            literal(game_id, Integer),
            literal(user_id, BigInteger),
            literal(True, Boolean),
        ).where(
            exists().where(Game.game_id == game_id, Game.status == expected_status)
        )
        stmt = insert(GamePlayer).from_select(
            [GamePlayer.game_id, GamePlayer.user_id, GamePlayer.is_alive], rows
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount == 1

    async def delete_player(self, db: AsyncSession, game_id: int, user_id: int) -> bool:
        stmt = (
            delete(GamePlayer)
            .where(GamePlayer.game_id == game_id, GamePlayer.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount > 0

    async def set_alive(self, db: AsyncSession, game_id: int, user_id: int, alive: bool) -> bool:
        stmt = (
            update(GamePlayer)
            .where(GamePlayer.game_id == game_id, GamePlayer.user_id == user_id)
            .values(is_alive=alive)
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount == 1

    # ── Vote ─────────────────────────────────────────────────────────────────

    async def set_vote(
        self,
        db: AsyncSession,
        game_id: int,
        voter_id: int,
        target_id: Optional[int],
        expected_day_number: Optional[int] = None,
    ) -> bool:
        """
        設定（或清除，target_id=None）玩家目前的投票

        參數：
            expected_day_number: 提供時，只有遊戲仍在「進行中、第 N 天的白天」才會寫入，
                避免投票落在已經被推進到夜晚的遊戲上

        返回：
            True 如果有寫入
        """
        conditions = [GamePlayer.game_id == game_id, GamePlayer.user_id == voter_id]
        if expected_day_number is not None:
            conditions.append(
                exists().where(
                    Game.game_id == game_id,
                    Game.status == GameStatus.ACTIVE,
                    Game.day_phase.is_(True),
                    Game.day_number == expected_day_number,
                )
            )
        stmt = (
            update(GamePlayer)
            .where(*conditions)
            .values(votes_for=target_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount == 1

    async def clear_votes(self, db: AsyncSession, game_id: int) -> int:
        """清除整場遊戲的投票，返回被清除的票數"""
        stmt = (
            update(GamePlayer)
            .where(GamePlayer.game_id == game_id, GamePlayer.votes_for.is_not(None))
            .values(votes_for=None)
            .execution_options(synchronize_session=False)
        )
        result = await self._run(db.execute(stmt))
        return result.rowcount

    # ── Server config ────────────────────────────────────────────────────────

    async def load_config(self, db: AsyncSession, guild_id: int) -> Optional[ServerConfig]:
        stmt = (
            select(ServerConfig)
            .where(ServerConfig.guild_id == guild_id)
            .execution_options(populate_existing=True)
        )
        result = await self._run(db.execute(stmt))
        return result.scalar_one_or_none()

    async def upsert_config(self, db: AsyncSession, guild_id: int, prefix: str, starting_number: int) -> None:
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            dialect_insert = postgresql.insert
        elif dialect == "sqlite":
            dialect_insert = sqlite.insert
        else:
            raise NotImplementedError(f"upsert is not supported on {dialect}")

        stmt = dialect_insert(ServerConfig).values(
            guild_id=guild_id, prefix=prefix, starting_number=starting_number
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ServerConfig.guild_id],
            set_={"prefix": prefix, "starting_number": starting_number, "updated_at": func.now()},
        )
        await self._run(db.execute(stmt))
