"""
Pydantic models for Supabase database tables.
These models represent the structure of data stored in Supabase.
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


# Transaction status values
TRANSACTION_PENDING = "pending"
TRANSACTION_COMPLETED = "completed"
TRANSACTION_FAILED = "failed"

# Sync status values
SYNC_UNSYNCED = "unsynced"
SYNC_SYNCED = "synced"

# Integration status values
INTEGRATION_ACTIVE = "active"
INTEGRATION_INACTIVE = "inactive"

AUTH_METHOD_OAUTH = "oauth"
AUTH_METHOD_API_KEY = "api_key"


class LineItem(BaseModel):
    """Single purchased line as reported by (or sent to) a POS provider."""
    name: str = ""
    barcode: Optional[str] = None
    sku: Optional[str] = None
    unit_price: float = 0.0
    quantity: float = 1
    category: Optional[str] = None
    external_id: Optional[str] = None  # Provider product/variant id, when known

    @property
    def total_price(self) -> float:
        return self.unit_price * self.quantity

    @property
    def lookup_code(self) -> Optional[str]:
        """Code used for catalog matching: barcode first, SKU as fallback."""
        return self.barcode or self.sku


class PosTransaction(BaseModel):
    """Model for pos_transactions table."""
    id: Optional[str] = None
    merchant_id: str
    pos_integration_id: Optional[str] = None
    pos_provider: str
    external_transaction_id: str
    total_amount: float
    currency: str = "USD"
    tax_amount: float = 0.0
    tip_amount: float = 0.0
    discount_amount: float = 0.0
    barter_amount: float = 0.0
    barter_percentage: float = 0.0
    cash_amount: float = 0.0
    card_amount: float = 0.0
    items: List[LineItem] = Field(default_factory=list)
    location_id: Optional[str] = None
    transaction_date: Optional[datetime] = None
    status: str = TRANSACTION_COMPLETED  # pending, completed, failed
    sync_status: str = SYNC_UNSYNCED  # unsynced, synced
    synced_at: Optional[datetime] = None
    raw_webhook_data: Optional[Dict[str, Any]] = None
    webhook_signature: Optional[str] = None
    created_at: Optional[datetime] = None


class POSIntegration(BaseModel):
    """Model for pos_integrations table. Tokens are Fernet ciphertext."""
    id: Optional[str] = None
    merchant_id: str
    provider: str
    auth_method: str = AUTH_METHOD_OAUTH  # oauth, api_key
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    token_version: int = 0
    store_id: Optional[str] = None  # Location / shop domain / restaurant GUID
    external_merchant_id: Optional[str] = None  # Merchant / account id at the provider
    status: str = INTEGRATION_ACTIVE  # active, inactive
    config: Dict[str, Any] = Field(default_factory=dict)
    scopes: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == INTEGRATION_ACTIVE

    def barter_percentage(self, default: float) -> float:
        value = self.config.get("barterPercentage")
        if value is None or value == "":
            return default
        return float(value)

    @property
    def daily_barter_limit(self) -> Optional[float]:
        value = self.config.get("dailyBarterLimit")
        return float(value) if value not in (None, "") else None


class OAuthState(BaseModel):
    """Model for oauth_states table. Single-use CSRF token for the OAuth redirect."""
    id: Optional[str] = None
    merchant_id: str
    provider: str
    state_token: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime
    created_at: Optional[datetime] = None


class WebhookLog(BaseModel):
    """Model for webhook_logs table (audit trail of every inbound webhook)."""
    provider: str
    endpoint: str
    payload: Optional[Dict[str, Any]] = None
    signature: Optional[str] = None
    status: str = "success"  # success, rejected, failed, duplicate, ignored
    error_message: Optional[str] = None
