from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class GenerationFeature(str, Enum):
    """Per-feature usage counters on the usage record."""
    DESCRIPTION = "descriptions_generated"
    SEO = "seo_generated"

class BillingMode(str, Enum):
    ADVISORY = "advisory"    # Would-be charges are logged, never executed
    ENFORCING = "enforcing"  # Billable items need an active usage plan

class DescriptionTone(str, Enum):
    SIMPLE = "simple"
    PREMIUM = "premium"
    INDIAN_AUDIENCE = "indian audience"
    PROFESSIONAL = "professional"
    PERSUASIVE = "persuasive"
    WITTY = "witty"
    LUXURY = "luxury"
    MINIMALIST = "minimalist"
    STORYTELLING = "storytelling"

class DescriptionLength(str, Enum):
    SHORT = "short"
    LONG = "long"


# ============================================================================
# USAGE LEDGER
# ============================================================================

class UsageRecord(BaseModel):
    """One usage document per shop (collection: usage_stats)."""
    shop: str
    credits: int = Field(ge=0)
    usage_count: int = 0
    descriptions_generated: int = 0
    seo_generated: int = 0
    billing_cycle_start: Optional[datetime] = None

    # Subscription bookkeeping (written by app_subscriptions/update webhook)
    subscription_id: Optional[str] = None
    plan_status: Optional[str] = None
    plan_name: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class MeteringDecision(BaseModel):
    """Outcome of metering one batch of generation items."""
    shop: str
    requested: int
    credit_covered: int = 0
    billable: int = 0
    charge_amount: Decimal = Decimal("0")
    billing_mode: BillingMode = BillingMode.ADVISORY
    charged: bool = False  # True only when a usage charge was actually submitted
    feature: Optional[GenerationFeature] = None

    @property
    def is_free(self) -> bool:
        return self.billable == 0


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class DescriptionRequest(BaseModel):
    product_title: Optional[str] = None
    product_description: Optional[str] = None
    tone: DescriptionTone = DescriptionTone.PROFESSIONAL
    length: DescriptionLength = DescriptionLength.SHORT
    language: str = "English"
    custom_instructions: str = ""


class BulkDescriptionItem(DescriptionRequest):
    product_id: str


class BulkDescriptionRequest(BaseModel):
    items: List[BulkDescriptionItem] = Field(min_length=1, max_length=50)


class BulkDescriptionResult(BaseModel):
    product_id: str
    rewritten: Optional[str] = None
    error: Optional[str] = None


class SeoRequest(BaseModel):
    product_title: str
    product_description: str = ""
    keywords: str = ""


class SeoMetadata(BaseModel):
    title: str
    description: str


class UsageSummary(BaseModel):
    shop: str
    credits: int
    usage_count: int
    descriptions_generated: int
    seo_generated: int
    billing_cycle_start: Optional[datetime] = None
    subscription_id: Optional[str] = None
    plan_status: Optional[str] = None
    plan_name: Optional[str] = None
