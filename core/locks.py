"""
並發控制工具

兩層保護，防止競態條件（Race Condition）：

1. Database-level：PostgreSQL 的 SELECT ... FOR UPDATE / FOR SHARE（悲觀鎖）
   SQLite 沒有行級鎖，SQLAlchemy 會直接省略 FOR UPDATE，
   所以真正的保證還是靠 store 的條件式 UPDATE（compare-and-swap）
2. Process-level：KeyedLocks，同一個 key（game_id / guild_id）的操作排隊執行
"""
import asyncio
import weakref
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.sql import Select

from models import Game


def with_game_lock(game_id: int, shared: bool = False) -> Select:
    """
    鎖定一個 Game（行級鎖）

    使用場景：
    - 推進日夜階段、改變遊戲 status 時（exclusive）
    - 投票時確認階段（shared：投票者之間不互斥，但會擋住同時進行的階段推進）

    範例：
        game = (await db.execute(with_game_lock(game_id))).scalar_one_or_none()
        if not game:
            raise GameNotFoundError(game_id)

    參數：
        game_id: Game 的 id
        shared: True 使用 FOR SHARE，False 使用 FOR UPDATE

    返回：
        Select statement（交給 session.execute）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
        - populate_existing：同一個 session 之前讀過的 instance 也要用最新值覆蓋
    """
    return (
        select(Game)
        .where(Game.game_id == game_id)
        .with_for_update(nowait=False, read=shared)
        .execution_options(populate_existing=True)
    )


class KeyedLocks:
    """
    以 key 區分的 asyncio.Lock

    範例：
        async with locks.hold(("game", game_id)):
            ...

    注意：
        - 只保證同一個 process 內的順序，跨 process 仍靠資料庫
        - 沒人持有的 lock 會被 GC 回收（WeakValueDictionary）
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def get(self, key) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key):
        lock = self.get(key)
        async with lock:
            yield

    def game(self, game_id: int):
        return self.hold(("game", game_id))

    def guild(self, guild_id: int):
        return self.hold(("guild", guild_id))
