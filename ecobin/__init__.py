"""
EcoBin Pipeline — Recycling Event Analytics & Rewards.

Architecture:
    ecobin/
    ├── api/             # FastAPI routers (read interface + redemption)
    ├── db/              # SQLAlchemy models, engine, event store queries
    ├── middleware/      # Error handling
    ├── schemas/         # Pydantic request/response models
    ├── services/        # Scheduler, metrics aggregator
    ├── anomalies/       # Anomaly rules, severity mapping, detector job
    ├── insights/        # Insight templates and generator job
    └── rewards/         # Scoring, ranks, accrual and redemption

Module Boundaries:
    - bin_events is owned by the ingestion layer — the pipeline only reads it
    - Each job exclusively writes its own derived table
    - Every ledger insert updates the materialized balance in the same transaction

Data Flow:
    Event Store → Metrics Aggregator → daily_bin_metrics ┐
    Event Store → Anomaly Detector  → anomalies         ├→ Insight Generator → bin_insights
    Event Store → Rewards Engine    → rewards_ledger + reward_balances

Version: 1.0.0
"""

__version__ = "1.0.0"
