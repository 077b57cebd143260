"""Selectors for the lifecycle kernel (read side)."""

from lifecycle_kernel.selectors.entity_selector import EntitySelector
from lifecycle_kernel.selectors.sla_selector import (
    AtRiskItem,
    BreachedItem,
    SLASelector,
    SLAStats,
)

__all__ = [
    "AtRiskItem",
    "BreachedItem",
    "EntitySelector",
    "SLASelector",
    "SLAStats",
]
