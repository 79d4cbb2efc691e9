"""Event scoring: points = hv*w_hv + lv*w_lv + org*w_org."""

from ecobin.config import ScoringTable
from ecobin.db.models import BinEvent


def score_event(event: BinEvent, table: ScoringTable) -> int:
    """Points earned by one deposit under a scoring table version."""
    return (
        (event.hv_count or 0) * table.weight("hv")
        + (event.lv_count or 0) * table.weight("lv")
        + (event.org_count or 0) * table.weight("org")
    )
