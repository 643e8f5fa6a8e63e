"""
日夜階段服務：判斷下一個階段

狼人殺的日夜循環：
- 白天（day_phase=True）：可以投票，結束時結算
- 夜晚（day_phase=False）：不能投票，夜晚行動不在核心範圍內
- 只有「夜晚 -> 白天」會讓 day_number + 1
"""
from typing import Tuple

from models import GameStatus


def next_phase(day_phase: bool, day_number: int) -> Tuple[bool, int]:
    """
    根據目前階段決定下一個階段

    規則：
    - 白天 -> 同一天的夜晚
    - 夜晚 -> 下一天的白天

    參數：
        day_phase: True 代表白天
        day_number: 目前第幾天

    返回：
        (new_day_phase, new_day_number)

    範例：
        next_phase(True, 1) -> (False, 1)
        next_phase(False, 1) -> (True, 2)
    """
    if day_phase:
        return False, day_number
    return True, day_number + 1


def is_voting_open(status: GameStatus, day_phase: bool) -> bool:
    """
    檢查目前是否可以投票

    用途：
        Manager 判斷 cast_vote 是否合法

    返回：
        True 如果遊戲進行中而且是白天
    """
    return status == GameStatus.ACTIVE and day_phase
