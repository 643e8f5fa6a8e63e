import asyncio
import logging
from functools import lru_cache, wraps

from pydantic_settings import BaseSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from core.exceptions import StoreError, StoreTimeoutError, WerewolfGameException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./werewolf.db"
    sql_echo: bool = False
    log_level: str = "INFO"

    # Upper bound (seconds) for every single store round-trip
    store_timeout: float = 5.0

    min_players: int = 3

    game_cache_size: int = 1000
    game_cache_ttl: float = 300
    config_cache_size: int = 10000
    config_cache_ttl: float = 1800

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str, echo: bool = False):
    """
    建立 AsyncEngine

    SQLite 走 aiosqlite，PostgreSQL 走 asyncpg，由 URL 的 driver 部分決定
    """
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=not database_url.startswith("sqlite"),
    )


engine = build_engine(settings.database_url, echo=settings.sql_echo)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
Base = declarative_base()


async def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    async with SessionLocal() as db:
        yield db


async def init_models(bind=None):
    """建立所有資料表（已存在的表不會被重建）"""
    import models  # noqa: F401  註冊所有 ORM model

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @staticmethod
        @transactional
        async def some_business_logic(db: AsyncSession, ...):
            # 所有 DB 操作都在一個 transaction 內
            db.add(Game(...))
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 異常會被重新拋出（讓上層處理）

    注意：
        - 第一個 AsyncSession 參數就是這次 transaction 的 session
        - commit 也受 store_timeout 限制，逾時視為 StoreTimeoutError
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        db = next((a for a in args if isinstance(a, AsyncSession)), None)
        if db is None:
            db = kwargs.get('db')

        if db is None:
            raise ValueError(
                f"@transactional requires a 'db: AsyncSession' argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        timeout = get_settings().store_timeout
        try:
            result = await func(*args, **kwargs)
            try:
                await asyncio.wait_for(db.commit(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise StoreTimeoutError(timeout) from e
            return result
        except Exception as e:
            if isinstance(e, WerewolfGameException) and not isinstance(e, StoreError):
                # 業務規則拒絕，不是系統錯誤
                logger.info(f"Transaction rolled back in {func.__name__}: {e}")
            else:
                logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            await db.rollback()
            raise

    return wrapper
