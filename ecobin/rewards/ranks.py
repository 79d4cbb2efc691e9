"""Rank tiers. Ranks are derived from the balance on read and never stored."""

from dataclasses import dataclass
from typing import Optional, Sequence

from ecobin.config import RankTier


@dataclass(frozen=True)
class RankInfo:
    rank: str
    next_rank: Optional[str]
    next_rank_points: int  # points still needed; 0 at the top tier


def rank_for(points: int, tiers: Sequence[RankTier]) -> RankInfo:
    """Highest tier whose threshold is met. Tiers must be ascending from 0."""
    current = tiers[0]
    upcoming: Optional[RankTier] = None
    for tier in tiers:
        if points >= tier.min_points:
            current = tier
        else:
            upcoming = tier
            break
    if upcoming is None:
        return RankInfo(rank=current.name, next_rank=None, next_rank_points=0)
    return RankInfo(
        rank=current.name,
        next_rank=upcoming.name,
        next_rank_points=upcoming.min_points - points,
    )
