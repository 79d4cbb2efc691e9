"""HTTP read/write interface over the derived tables."""
