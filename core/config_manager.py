"""
Server Config Manager：每個 guild 的 bot 設定（指令前綴、起始編號）

設定很少改變，所以快取 TTL 比遊戲狀態長
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.state_cache import StateCache
from core.store import GameStore
from database import transactional
from schemas import ServerConfigState

logger = logging.getLogger(__name__)


class ConfigManager:

    def __init__(self, store: GameStore, cache: StateCache):
        self.store = store
        self.cache = cache

    async def get_server_config(self, db: AsyncSession, guild_id: int) -> Optional[ServerConfigState]:
        """快取優先；guild 還沒設定過時回傳 None"""
        cached = self.cache.get_config(guild_id)
        if cached is not None:
            return cached

        token = self.cache.begin_read(guild_id)
        row = await self.store.load_config(db, guild_id)
        if row is None:
            return None

        config = ServerConfigState.model_validate(row)
        self.cache.put_config(guild_id, config, token=token)
        return config

    async def set_server_config(
        self, db: AsyncSession, guild_id: int, prefix: str, starting_number: int
    ) -> ServerConfigState:
        """
        新增或更新 guild 的設定

        異常：
            ValueError: prefix 是空的或含空白，或 starting_number < 0
        """
        if not prefix or any(ch.isspace() for ch in prefix) or len(prefix) > 16:
            raise ValueError(f"Invalid prefix: {prefix!r}")
        if starting_number < 0:
            raise ValueError(f"starting_number must be >= 0, got {starting_number}")

        try:
            await self._upsert(db, self.store, guild_id, prefix, starting_number)
        finally:
            # commit 逾時的時候寫入可能已經生效
            self.cache.invalidate_config(guild_id)

        logger.info(f"Server config updated for guild {guild_id}: prefix={prefix!r}, starting_number={starting_number}")
        return ServerConfigState(guild_id=guild_id, prefix=prefix, starting_number=starting_number)

    @staticmethod
    @transactional
    async def _upsert(db: AsyncSession, store: GameStore, guild_id: int, prefix: str, starting_number: int) -> None:
        await store.upsert_config(db, guild_id, prefix, starting_number)
