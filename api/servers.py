"""
Server Config API Endpoints

guild 的 bot 設定（指令前綴、起始編號）
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_config_manager, to_http_exception
from core.config_manager import ConfigManager
from core.exceptions import WerewolfGameException
from database import get_db
from schemas import ServerConfigState, ServerConfigUpdate

router = APIRouter(prefix="/api/servers", tags=["servers"])
logger = logging.getLogger(__name__)


@router.get("/{guild_id}/config", response_model=ServerConfigState)
async def get_server_config(
    guild_id: int,
    db: AsyncSession = Depends(get_db),
    manager: ConfigManager = Depends(get_config_manager),
):
    try:
        config = await manager.get_server_config(db, guild_id)
        if config is None:
            raise HTTPException(status_code=404, detail="Server not configured")
        return config

    except HTTPException:
        raise
    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get server config: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{guild_id}/config", response_model=ServerConfigState)
async def set_server_config(
    guild_id: int,
    body: ServerConfigUpdate,
    db: AsyncSession = Depends(get_db),
    manager: ConfigManager = Depends(get_config_manager),
):
    """新增或更新 guild 設定（Admin endpoint）"""
    try:
        return await manager.set_server_config(db, guild_id, body.prefix, body.starting_number)

    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to set server config: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
