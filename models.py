import enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class GameStatus(str, enum.Enum):
    SETUP = "setup"
    SIGNUP = "signup"
    ACTIVE = "active"
    ENDED = "ended"


# 「未結束」的遊戲：同一個 guild 同時最多一場
OPEN_STATUSES = (GameStatus.SETUP, GameStatus.SIGNUP, GameStatus.ACTIVE)


class Game(Base):
    __tablename__ = "games"

    game_id = Column(Integer, primary_key=True, autoincrement=True)
    guild_id = Column(BigInteger, nullable=False, index=True)
    status = Column(
        Enum(
            GameStatus,
            name="game_status",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=GameStatus.SIGNUP,
    )
    created_by = Column(BigInteger, nullable=True)
    day_phase = Column(Boolean, nullable=False, default=True)  # True = 白天
    day_number = Column(Integer, nullable=False, default=0)
    # 白天結束時票數 >= 這個值的玩家會被標記為可處決
    votes_to_hang = Column(Integer, nullable=False, default=4, server_default=text("4"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    phase_changed_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    players = relationship(
        "GamePlayer",
        back_populates="game",
        cascade="all, delete-orphan",
        order_by="GamePlayer.user_id",
        lazy="raise",
    )

    __table_args__ = (
        # 資料庫層保證：每個 guild 只能有一場未結束的遊戲
        Index(
            "uq_games_open_per_guild",
            "guild_id",
            unique=True,
            sqlite_where=text("status != 'ended'"),
            postgresql_where=text("status != 'ended'"),
        ),
    )


class GamePlayer(Base):
    __tablename__ = "game_players"

    game_id = Column(Integer, ForeignKey("games.game_id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(BigInteger, primary_key=True)
    role_id = Column(Integer, nullable=True)
    is_alive = Column(Boolean, nullable=False, default=True)
    # 唯一的投票紀錄：玩家目前投給誰（user_id），沒有另外的 votes 表
    votes_for = Column(BigInteger, nullable=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    game = relationship("Game", back_populates="players", lazy="raise")


class ServerConfig(Base):
    __tablename__ = "server_config"

    guild_id = Column(BigInteger, primary_key=True, autoincrement=False)
    prefix = Column(String(16), nullable=False)
    starting_number = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
