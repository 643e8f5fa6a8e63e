"""
HTTP API

外部的指令分派器（chat bot）透過這些 endpoint 呼叫核心：
- games：遊戲生命週期與玩家
- votes：投票、計票、推進日夜
- servers：guild 設定
"""
