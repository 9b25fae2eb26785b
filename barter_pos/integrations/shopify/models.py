"""
Pydantic models for Shopify order webhook payloads.
Handles orders/create and orders/paid events.
"""

from pydantic import BaseModel, Field


class ShopifyLineItem(BaseModel):
    """Shopify order line item."""

    id: int | None = None
    product_id: int | None = None
    variant_id: int | None = None
    title: str = ""
    name: str | None = None
    sku: str | None = None
    price: str = "0.00"
    quantity: int = 1
    vendor: str | None = None


class ShopifyCustomer(BaseModel):
    id: int | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class ShopifyOrder(BaseModel):
    """Shopify order model (subset used for settlement)."""

    id: int
    name: str | None = None
    currency: str = "USD"
    total_price: str = "0.00"
    subtotal_price: str | None = None
    total_tax: str | None = None
    total_discounts: str | None = None
    total_tip_received: str | None = None
    financial_status: str | None = None
    location_id: int | None = None
    created_at: str | None = None
    line_items: list[ShopifyLineItem] = Field(default_factory=list)
    customer: ShopifyCustomer | None = None
