"""
計票服務：白天投票的排名計算

純計算邏輯，不碰資料庫也不碰快取
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from schemas import TallyEntry


def tally_votes(
    alive_player_ids: Iterable[int],
    votes: Iterable[Tuple[int, int]],
    votes_to_hang: Optional[int] = None,
) -> List[TallyEntry]:
    """
    計算投票排名

    規則：
    1. 只算「活著的玩家」投給「活著的玩家」的票
    2. 依被投票者分組，計算不重複的投票者數量
    3. 票數多的排前面；同票時 target_id 小的排前面
    4. 零票的玩家不會出現在結果裡
    5. 有給 votes_to_hang 時，票數 >= 門檻的項目 reached_threshold=True

    參數：
        alive_player_ids: 目前活著的玩家 user_id
        votes: (voter_id, target_id) 的序列
        votes_to_hang: 處決門檻（None 表示不標記）

    返回：
        TallyEntry 列表（沒有任何有效票時為空）

    範例：
        alive = {1, 2, 3}
        votes = [(1, 2), (3, 2), (2, 1)]
        -> [TallyEntry(target_id=2, count=2, voters=(1, 3)),
            TallyEntry(target_id=1, count=1, voters=(2,))]
    """
    alive = set(alive_player_ids)
    voters_by_target: Dict[int, Set[int]] = defaultdict(set)

    for voter_id, target_id in votes:
        if voter_id in alive and target_id in alive:
            voters_by_target[target_id].add(voter_id)

    ranking = [
        TallyEntry(
            target_id=target_id,
            count=len(voters),
            voters=tuple(sorted(voters)),
            reached_threshold=votes_to_hang is not None and len(voters) >= votes_to_hang,
        )
        for target_id, voters in voters_by_target.items()
    ]
    ranking.sort(key=lambda entry: (-entry.count, entry.target_id))
    return ranking


def tally_players(players: Iterable, votes_to_hang: Optional[int] = None) -> List[TallyEntry]:
    """
    從玩家列表（ORM row 或 PlayerState）計票

    每個玩家的 votes_for 就是他目前唯一的一票
    """
    players = list(players)
    alive_ids = [p.user_id for p in players if p.is_alive]
    votes = [(p.user_id, p.votes_for) for p in players if p.votes_for is not None]
    return tally_votes(alive_ids, votes, votes_to_hang)
