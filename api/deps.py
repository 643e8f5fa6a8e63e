"""
API 共用的 dependency 與錯誤轉換

Manager 在 lifespan 建立一次，掛在 app.state 上；測試可以用 dependency_overrides 換掉
"""
from fastapi import HTTPException, Request

from core.config_manager import ConfigManager
from core.exceptions import (
    AlreadyJoinedError,
    ConflictError,
    GameNotFoundError,
    StoreTimeoutError,
    StoreUnavailableError,
    WerewolfGameException,
)
from core.game_manager import GameManager
from core.phase_manager import PhaseManager


def get_game_manager(request: Request) -> GameManager:
    return request.app.state.game_manager


def get_phase_manager(request: Request) -> PhaseManager:
    return request.app.state.phase_manager


def get_config_manager(request: Request) -> ConfigManager:
    return request.app.state.config_manager


# 沒列在這裡的業務異常一律 400
STATUS_CODES = {
    GameNotFoundError: 404,
    ConflictError: 409,
    AlreadyJoinedError: 409,
    StoreTimeoutError: 504,
    StoreUnavailableError: 503,
}


def to_http_exception(exc: WerewolfGameException) -> HTTPException:
    """業務異常 -> HTTPException（detail 帶上異常類別名稱，方便呼叫端分辨）"""
    status_code = next(
        (code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)),
        400,
    )
    return HTTPException(
        status_code=status_code,
        detail={"error": type(exc).__name__, "message": str(exc)},
    )
