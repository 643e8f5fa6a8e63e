"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- TallyService：投票排名計算
- PhaseService：日夜階段規則
"""
