"""Database layer: engine, models, event store queries."""
