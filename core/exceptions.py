"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

除了 StoreUnavailableError 以外，全部都是呼叫端可以處理的錯誤
（通常轉成給玩家看的訊息）
"""


class WerewolfGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ Game 相關異常 ============

class GameNotFoundError(WerewolfGameException):
    """遊戲不存在"""
    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class ConflictError(WerewolfGameException):
    """同一個 guild 已經有未結束的遊戲"""
    def __init__(self, guild_id, existing_game_id=None):
        self.guild_id = guild_id
        self.existing_game_id = existing_game_id
        super().__init__(
            f"Guild {guild_id} already has an unfinished game"
            + (f" ({existing_game_id})" if existing_game_id is not None else "")
        )


class InvalidStateError(WerewolfGameException):
    """目前的遊戲狀態或階段不允許這個操作"""
    pass


class InsufficientPlayersError(WerewolfGameException):
    """玩家人數不足，無法開始遊戲"""
    def __init__(self, player_count, required):
        self.player_count = player_count
        self.required = required
        super().__init__(f"Need at least {required} players to start, got {player_count}")


# ============ Player 相關異常 ============

class NotAPlayerError(WerewolfGameException):
    """使用者不在這場遊戲裡"""
    def __init__(self, game_id, user_id):
        self.game_id = game_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not a player in game {game_id}")


class AlreadyJoinedError(WerewolfGameException):
    """使用者已經報名過了"""
    def __init__(self, game_id, user_id):
        self.game_id = game_id
        self.user_id = user_id
        super().__init__(f"User {user_id} already joined game {game_id}")


class DeadPlayerError(WerewolfGameException):
    """死亡玩家不能做這個操作"""
    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Player {user_id} is dead")


# ============ Vote 相關異常 ============

class UnknownPlayerError(WerewolfGameException):
    """投票目標不是這場遊戲的玩家"""
    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Vote target {user_id} is not a player in this game")


class SelfVoteError(WerewolfGameException):
    """不能投給自己"""
    pass


class NoVoteError(WerewolfGameException):
    """玩家目前沒有投票，無法收回"""
    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Player {user_id} has not voted")


# ============ Store 相關異常 ============

class StoreError(WerewolfGameException):
    """資料庫層的錯誤（基礎設施問題，不是業務規則）"""
    pass


class StoreTimeoutError(StoreError):
    """資料庫操作逾時"""
    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"Store operation exceeded {timeout}s")


class StoreUnavailableError(StoreError):
    """資料庫無法連線，這次請求直接失敗"""
    pass
