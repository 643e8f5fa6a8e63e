"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理遊戲 status 的轉換
- Manager：管理 Game、日夜階段與伺服器設定的生命週期
- Store：資料庫存取（所有呼叫都有逾時上限）
- StateCache：以 guild 為 key 的 TTL 快取
- Locks：並發控制工具
"""
