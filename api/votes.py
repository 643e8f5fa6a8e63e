"""
Vote API Endpoints

重點：
1. 投票 / 收回：玩家 endpoint，白天才能投
2. 計票：隨時可以查目前的排名
3. 推進日夜：Host endpoint，同時送出兩次只會生效一次
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_game_manager, get_phase_manager, to_http_exception
from core.exceptions import WerewolfGameException
from core.game_manager import GameManager
from core.phase_manager import PhaseManager
from database import get_db
from schemas import ActionResponse, AdvanceRequest, AdvanceResult, CastVoteRequest, TallyEntry

router = APIRouter(prefix="/api/games", tags=["votes"])
logger = logging.getLogger(__name__)


@router.post("/{game_id}/votes", response_model=ActionResponse)
async def cast_vote(
    game_id: int,
    body: CastVoteRequest,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """
    投票（覆蓋之前的投票）

    前置條件：
    - 遊戲進行中而且是白天
    - 投票者活著、不是投給自己、目標是這場遊戲的玩家
    """
    try:
        await manager.cast_vote(db, game_id, body.voter_id, body.target_id)
        return ActionResponse(status="ok")

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to cast vote: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{game_id}/votes/{voter_id}", response_model=ActionResponse)
async def retract_vote(
    game_id: int,
    voter_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    try:
        await manager.retract_vote(db, game_id, voter_id)
        return ActionResponse(status="ok")

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to retract vote: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}/votes", response_model=List[TallyEntry])
async def get_vote_tally(
    game_id: int,
    db: AsyncSession = Depends(get_db),
    manager: GameManager = Depends(get_game_manager),
):
    """目前的投票排名（票數多的在前，同票時 user_id 小的在前）"""
    try:
        return await manager.get_vote_tally(db, game_id)

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get vote tally: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{game_id}/advance", response_model=AdvanceResult)
async def advance_phase(
    game_id: int,
    body: Optional[AdvanceRequest] = None,
    db: AsyncSession = Depends(get_db),
    phases: PhaseManager = Depends(get_phase_manager),
):
    """
    推進日夜（Host endpoint）

    效果：
    - 白天 -> 夜晚：回傳當天的計票結果，清掉所有投票
    - 夜晚 -> 白天：day_number + 1

    並發：
    - 別人已經先推進時回傳 applied=false 與目前的階段（不是錯誤）
    """
    body = body or AdvanceRequest()
    try:
        return await phases.advance_phase(
            db,
            game_id,
            expected_day_phase=body.expected_day_phase,
            expected_day_number=body.expected_day_number,
        )

    except WerewolfGameException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to advance phase: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
