"""Pipeline services: the job scheduler and the daily metrics aggregator."""
