"""
Quota models for free-tier allowances.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class QuotaCategory(str, Enum):
    """Consumable categories gated by the ledger."""

    NOTES = "notes"
    EXTRACTION = "extraction"
    RESOLUTION = "resolution"
    DAILY_DIGEST = "daily_digest"


class ResetPolicy(str, Enum):
    """When a category's counter returns to its maximum."""

    MONTHLY = "monthly"
    NEVER = "never"


class QuotaPolicy(BaseModel):
    """Configured allowance for one category."""

    maximum: int = Field(..., ge=0, description="Units granted per period")
    reset: ResetPolicy = Field(default=ResetPolicy.MONTHLY, description="Reset cadence")


class QuotaState(BaseModel):
    """
    Persisted state of one category.

    Invariants:
    - remaining never goes below zero
    - free_grant_used flips to True exactly once per category
    """

    category: QuotaCategory
    remaining: int = Field(..., ge=0, description="Units left in the current period")
    free_grant_used: bool = Field(default=False, description="First use already granted")
    period_start: datetime | None = Field(
        default=None, description="Start of the current period (time-boxed categories only)"
    )


class ConsumeStatus(str, Enum):
    """Result of a consume attempt."""

    FREE_GRANT = "free_grant"
    CONSUMED = "consumed"
    QUOTA_EXCEEDED = "quota_exceeded"


class ConsumeResult(BaseModel):
    """Outcome of QuotaLedger.consume."""

    category: QuotaCategory
    status: ConsumeStatus
    remaining: int

    @property
    def granted(self) -> bool:
        """True when the caller may proceed with the gated operation."""
        return self.status != ConsumeStatus.QUOTA_EXCEEDED
