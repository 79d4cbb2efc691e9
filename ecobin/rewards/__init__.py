"""
EcoBin Rewards.

Components:
- scoring: points per event from the versioned scoring table
- ranks: rank tier lookup
- engine: exactly-once accrual, atomic redemption, summaries
"""
