"""
Pytest fixtures

每個測試都有自己的 SQLite 檔案（tmp_path）、自己的 StateCache（假時鐘）與 Manager
"""
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config_manager import ConfigManager
from core.game_manager import GameManager
from core.locks import KeyedLocks
from core.phase_manager import PhaseManager
from core.state_cache import StateCache
from core.store import GameStore
from database import build_engine, init_models

GUILD_ID = 42
CREATOR_ID = 100


class FakeTimer:
    """可手動推進的時鐘，給 TTLCache 用"""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'werewolf_test.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def cache(timer):
    return StateCache(timer=timer)


@pytest.fixture
def store():
    return GameStore(timeout=5.0)


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def game_manager(store, cache, locks):
    return GameManager(store, cache, locks=locks, min_players=3)


@pytest.fixture
def phase_manager(store, cache, locks):
    return PhaseManager(store, cache, locks=locks)


@pytest.fixture
def config_manager(store, cache):
    return ConfigManager(store, cache)


@pytest.fixture
async def signup_game(db, game_manager):
    """guild 42 的新遊戲，還沒有玩家"""
    return await game_manager.create_game(db, GUILD_ID, CREATOR_ID)


@pytest.fixture
async def active_game(db, game_manager, signup_game):
    """玩家 1、2、3 已報名並開始（第 1 天白天）"""
    for user_id in (1, 2, 3):
        await game_manager.join_game(db, signup_game, user_id)
    await game_manager.start_game(db, signup_game)
    return signup_game
