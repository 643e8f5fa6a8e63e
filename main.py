import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api import games, servers, votes
from core.config_manager import ConfigManager
from core.game_manager import GameManager
from core.locks import KeyedLocks
from core.phase_manager import PhaseManager
from core.state_cache import StateCache
from core.store import GameStore
from database import engine, get_settings, init_models

settings = get_settings()

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=settings.log_level.upper(),
)
logger = logging.getLogger(__name__)


def build_managers(app: FastAPI, settings, cache: StateCache = None) -> None:
    """建立共用的 cache / store / manager，掛在 app.state 上（整個 process 只有一份）"""
    cache = cache or StateCache.from_settings(settings)
    store = GameStore(timeout=settings.store_timeout)
    locks = KeyedLocks()

    app.state.cache = cache
    app.state.game_manager = GameManager(store, cache, locks=locks, min_players=settings.min_players)
    app.state.phase_manager = PhaseManager(store, cache, locks=locks)
    app.state.config_manager = ConfigManager(store, cache)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料庫表與共用元件
    await init_models()
    build_managers(app, settings)
    logger.info("Werewolf game service started")
    yield
    # Shutdown: 關閉連線池
    await engine.dispose()
    logger.info("Werewolf game service stopped")


app = FastAPI(
    title="Werewolf Game API",
    description="Game phase and vote tally engine for chat-server werewolf games",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(games.router)
app.include_router(votes.router)
app.include_router(servers.router)


@app.get("/")
def root():
    return {"message": "Werewolf Game API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
