"""
Pydantic models for split calculation, checkout eligibility and outbound sync requests.
"""

from typing import Any

from pydantic import BaseModel, Field

from barter_pos.models.database import LineItem


class SplitResult(BaseModel):
    """Barter / card / cash breakdown of a transaction total."""

    barter_amount: float
    barter_percentage: float
    cash_amount: float
    card_amount: float
    total_amount: float


class ProductEligibility(BaseModel):
    """Barter eligibility of one line item, resolved against the merchant catalog."""

    product_id: str | None = None
    product_name: str | None = None
    sku: str | None = None
    is_barter_eligible: bool
    restriction_reason: str | None = None
    category_name: str | None = None
    category_is_restricted: bool = False
    matched: bool = True  # False when the item had no catalog match


class ClassifiedItem(BaseModel):
    """Line item paired with its eligibility decision."""

    item: LineItem
    eligibility: ProductEligibility

    @property
    def total_price(self) -> float:
        return self.item.total_price


class CheckoutSplit(BaseModel):
    """Line items separated into barter-eligible and restricted groups."""

    eligible_items: list[ClassifiedItem] = Field(default_factory=list)
    restricted_items: list[ClassifiedItem] = Field(default_factory=list)
    eligible_subtotal: float = 0.0
    restricted_subtotal: float = 0.0
    total_subtotal: float = 0.0
    has_restricted_items: bool = False


class EnhancedBarterPayment(BaseModel):
    """Full cash / barter / tax breakdown for a checkout."""

    eligible_subtotal: float
    restricted_subtotal: float
    max_barter_amount: float
    barter_amount: float
    cash_for_eligible_items: float
    cash_for_restricted_items: float
    total_cash_subtotal: float
    tax_rate: float
    tax_on_cash: float
    final_total: float
    barter_credits_remaining: float
    eligible_items: list[ClassifiedItem] = Field(default_factory=list)
    restricted_items: list[ClassifiedItem] = Field(default_factory=list)


class CheckoutValidation(BaseModel):
    """Result of validating an EnhancedBarterPayment before settlement."""

    is_valid: bool
    errors: list[dict[str, str]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class CheckoutTransaction(BaseModel):
    """Cart presented at checkout for eligibility matching."""

    id: str | None = None
    items: list[LineItem] = Field(default_factory=list)


class CheckoutItem(LineItem):
    """Cart line submitted at checkout: non-negative price, positive quantity."""

    unit_price: float = Field(default=0.0, ge=0)
    quantity: float = Field(default=1, gt=0)


class CheckoutRequest(BaseModel):
    """Body of the checkout calculate / settle endpoints."""

    merchant_id: str
    items: list[CheckoutItem]
    barter_percentage: float = Field(ge=0, le=100)
    available_credits: float = Field(ge=0)
    tax_rate: float = Field(default=0.0, ge=0)
    currency: str = "USD"
    pos_integration_id: str | None = None
    customer_info: dict[str, Any] | None = None


class SyncTotals(BaseModel):
    subtotal: float = 0.0
    cash_amount: float = 0.0
    barter_amount: float = 0.0
    tax_amount: float = 0.0
    total: float = 0.0  # Cash due including tax
    tax_rate: float | None = None  # Percent, applied to the cash portion only


class SyncRequest(BaseModel):
    """Outbound sync request: push a settled local transaction into the POS."""

    transaction_id: str
    merchant_id: str
    pos_integration_id: str
    items: list[LineItem] = Field(default_factory=list)
    totals: SyncTotals = Field(default_factory=SyncTotals)
    customer_info: dict[str, Any] | None = None
    currency: str = "USD"


class SyncResponse(BaseModel):
    success: bool
    pos_transaction_id: str | None = None
    provider: str
    details: dict[str, Any] = Field(default_factory=dict)
