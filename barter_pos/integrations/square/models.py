"""
Pydantic models for Square webhook payloads.
Handles payment.created and payment.updated events.
"""

from typing import Any

from pydantic import BaseModel


class SquareMoney(BaseModel):
    """Square Money object - amount is in CENTS (smallest currency unit)."""

    amount: int = 0  # Amount in cents (e.g., 10000 = $100.00)
    currency: str = "USD"


class SquarePayment(BaseModel):
    """Square Payment object as delivered in data.object.payment."""

    id: str
    location_id: str | None = None
    order_id: str | None = None
    status: str | None = None
    amount_money: SquareMoney | None = None
    tip_money: SquareMoney | None = None
    tax_money: SquareMoney | None = None
    total_money: SquareMoney | None = None
    created_at: str | None = None


class SquareWebhookEvent(BaseModel):
    """Square webhook envelope."""

    merchant_id: str | None = None
    type: str
    event_id: str | None = None
    created_at: str | None = None
    data: dict[str, Any] | None = None

    def get_payment(self) -> SquarePayment | None:
        payment = ((self.data or {}).get("object") or {}).get("payment")
        if not payment:
            return None
        return SquarePayment(**payment)
