"""
StateCache：以 guild 為 key 的遊戲狀態 / 伺服器設定快取

規則：
- 快取不是資料來源，miss 一律回頭讀資料庫
- 容量有上限，超過時淘汰最久沒用的項目（LRU）
- TTL 從寫入時開始算，讀取不會延長壽命
- 寫入資料庫並 commit 之後才能 invalidate

Read-through 的保護：
    讀取端在讀資料庫「之前」先呼叫 begin_read() 拿到 token，
    讀完後 put_*(..., token=token)。如果這段期間該 guild 被 invalidate 過，
    這次寫回會被丟棄，避免把比 invalidate 還舊的值放回快取。

範例：
    token = cache.begin_read(guild_id)
    state = await load_from_store(...)
    cache.put_game(guild_id, state, token=token)

注意：
    - 所有方法都是同步的、中間沒有 await，在同一個 event loop 內不會互相穿插
    - 由 lifespan 建立一次、以 reference 共用；測試可以自己建一個（可注入 timer）
"""
import logging
import time
from typing import Callable, Hashable, Optional

from cachetools import LRUCache, TTLCache

from schemas import GameState, ServerConfigState

logger = logging.getLogger(__name__)

GAME = "game"
CONFIG = "config"


class _InvalidationLog(LRUCache):
    """
    記錄每個 key 最後一次被 invalidate 的時間戳（單調遞增的整數）

    被 LRU 淘汰的紀錄不會消失，而是提高 floor：
    沒有紀錄的 key 一律視為「在 floor 時被 invalidate 過」，只會更保守
    """

    def __init__(self, maxsize):
        super().__init__(maxsize=maxsize)
        self.floor = 0

    def popitem(self):
        key, stamp = super().popitem()
        self.floor = max(self.floor, stamp)
        return key, stamp

    def stamp_of(self, key) -> int:
        return max(self.get(key, 0), self.floor)


class StateCache:
    """遊戲狀態與伺服器設定的 TTL 快取"""

    def __init__(
        self,
        game_maxsize: int = 1000,
        game_ttl: float = 300,
        config_maxsize: int = 10000,
        config_ttl: float = 1800,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._games = TTLCache(maxsize=game_maxsize, ttl=game_ttl, timer=timer)
        self._configs = TTLCache(maxsize=config_maxsize, ttl=config_ttl, timer=timer)
        self._invalidations = _InvalidationLog(maxsize=game_maxsize + config_maxsize)
        self._clock = 0

    @classmethod
    def from_settings(cls, settings) -> "StateCache":
        return cls(
            game_maxsize=settings.game_cache_size,
            game_ttl=settings.game_cache_ttl,
            config_maxsize=settings.config_cache_size,
            config_ttl=settings.config_cache_ttl,
        )

    # ── read-through token ─────────────────────────────────────────────────

    def begin_read(self, guild_id: int) -> int:
        """在讀資料庫之前呼叫，回傳之後 put 要帶的 token"""
        return self._clock

    def _is_stale(self, key: Hashable, token: Optional[int]) -> bool:
        if token is None:
            return False
        return self._invalidations.stamp_of(key) > token

    def _mark_invalidated(self, key: Hashable) -> None:
        self._clock += 1
        self._invalidations[key] = self._clock

    # ── game state ─────────────────────────────────────────────────────────

    def get_game(self, guild_id: int) -> Optional[GameState]:
        return self._games.get(guild_id)

    def put_game(self, guild_id: int, state: GameState, token: Optional[int] = None) -> bool:
        """
        寫入遊戲狀態

        返回：
            True 如果有寫入；False 如果 token 之後發生過 invalidate（寫回被丟棄）
        """
        if self._is_stale((GAME, guild_id), token):
            logger.warning(f"Dropped stale game cache write-back for guild {guild_id}")
            return False
        self._games[guild_id] = state
        return True

    def invalidate_game(self, guild_id: int) -> None:
        self._mark_invalidated((GAME, guild_id))
        self._games.pop(guild_id, None)
        logger.debug(f"Invalidated game cache for guild {guild_id}")

    def forget_game(self, game_id: int) -> None:
        """
        寫入結果不明（例如 commit 逾時）時使用：只知道 game_id，不知道 guild

        invalidate 快取裡屬於這場遊戲的 guild，並讓所有進行中的 read-through 寫回失效
        """
        for guild_id in list(self._games):
            state = self._games.get(guild_id)
            if state is not None and state.game_id == game_id:
                self.invalidate_game(guild_id)
        self._clock += 1
        self._invalidations.floor = self._clock
        logger.warning(f"Forgot cached state of game {game_id} after an unconfirmed write")

    # ── server config ──────────────────────────────────────────────────────

    def get_config(self, guild_id: int) -> Optional[ServerConfigState]:
        return self._configs.get(guild_id)

    def put_config(self, guild_id: int, config: ServerConfigState, token: Optional[int] = None) -> bool:
        if self._is_stale((CONFIG, guild_id), token):
            logger.warning(f"Dropped stale config cache write-back for guild {guild_id}")
            return False
        self._configs[guild_id] = config
        return True

    def invalidate_config(self, guild_id: int) -> None:
        self._mark_invalidated((CONFIG, guild_id))
        self._configs.pop(guild_id, None)

    def clear(self) -> None:
        """清空所有快取（之前拿到的 token 全部失效）"""
        self._clock += 1
        self._invalidations.floor = self._clock
        self._games.clear()
        self._configs.clear()
