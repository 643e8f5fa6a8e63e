"""
Game API Endpoints

職責：
1. 查詢 guild 目前的遊戲（快取優先）
2. 建立 / 開始 / 結束遊戲、遊戲設定（處決門檻）
3. 玩家報名、退出、處決
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_game_manager, to_http_exception
from core.exceptions import WerewolfGameException
from core.game_manager import GameManager
from database import get_db
from schemas import (
    ActionResponse,
    CreateGameRequest,
    CreateGameResponse,
    GameSettingsUpdate,
    GameState,
    JoinGameRequest,
    PlayerState,
)

router = APIRouter(prefix="/api", tags=["games"])
logger = logging.getLogger(__name__)


@router.get("/guilds/{guild_id}/game", response_model=GameState)
async def get_active_game(
    guild_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """取得 guild 目前未結束的遊戲（沒有時 404）"""
    try:
        game = await manager.get_active_game(db, guild_id)
        if game is None:
            raise HTTPException(status_code=404, detail="No active game")
        return game

    except HTTPException:
        raise
    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get active game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/guilds/{guild_id}/game", response_model=CreateGameResponse, status_code=201)
async def create_game(
    guild_id: int,
    body: CreateGameRequest,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """
    建立新遊戲（Host endpoint）

    前置條件：
    - guild 沒有未結束的遊戲（否則 409）
    """
    try:
        game_id = await manager.create_game(db, guild_id, body.creator_user_id)
        return CreateGameResponse(game_id=game_id)

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to create game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/guilds/{guild_id}/refresh", response_model=GameState)
async def refresh(
    guild_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """丟掉快取並重新讀取遊戲狀態"""
    try:
        game = await manager.refresh(db, guild_id)
        if game is None:
            raise HTTPException(status_code=404, detail="No active game")
        return game

    except HTTPException:
        raise
    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to refresh game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/games/{game_id}", response_model=GameState)
async def get_game(
    game_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    try:
        return await manager.get_game(db, game_id)

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/games/{game_id}/players", response_model=List[PlayerState])
async def list_players(
    game_id: int,
    alive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """列出玩家（?alive=true 只列活著的）"""
    try:
        return await manager.list_players(db, game_id, alive_only=alive)

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to list players: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/games/{game_id}/players", response_model=ActionResponse, status_code=201)
async def join_game(
    game_id: int,
    body: JoinGameRequest,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """
    報名遊戲（玩家 endpoint）

    前置條件：
    - 遊戲狀態必須是 SIGNUP
    - 還沒報名過
    """
    try:
        await manager.join_game(db, game_id, body.user_id)
        return ActionResponse(status="ok")

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to join game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/games/{game_id}/players/{user_id}", response_model=ActionResponse)
async def leave_game(
    game_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    try:
        await manager.leave_game(db, game_id, user_id)
        return ActionResponse(status="ok")

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to leave game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/games/{game_id}/players/{user_id}/kill", response_model=ActionResponse)
async def kill_player(
    game_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """主持人處決玩家（Host endpoint）"""
    try:
        await manager.kill_player(db, game_id, user_id)
        return ActionResponse(status="ok")

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to kill player: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/games/{game_id}/start", response_model=GameState)
async def start_game(
    game_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """
    開始遊戲（Host endpoint）

    效果：
    - 狀態轉換 SIGNUP -> ACTIVE，進入第 1 天白天
    """
    try:
        return await manager.start_game(db, game_id)

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to start game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/games/{game_id}/end", response_model=GameState)
async def end_game(
    game_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    try:
        return await manager.end_game(db, game_id)

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to end game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/games/{game_id}/settings", response_model=GameState)
async def update_game_settings(
    game_id: int,
    body: GameSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """
    更新遊戲設定（Host endpoint）

    - votes_to_hang：白天結束時票數達到這個值的玩家會在計票結果裡被標記
    """
    try:
        return await manager.set_votes_to_hang(db, game_id, body.votes_to_hang)

    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to update game settings: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
