"""
Configuration management using Pydantic settings.
Loads environment variables for Supabase, token encryption, settlement policy
and the per-provider OAuth/webhook credentials.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Application Configuration
    app_environment: str = "development"
    log_level: str = "INFO"
    app_base_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"

    # Security
    token_encryption_key: str = ""  # 44-char Fernet key, required to store tokens
    allow_unsigned_webhooks: bool = False  # Sandbox only: accept webhooks when no secret is set
    oauth_state_ttl_minutes: int = 10

    # Settlement policy
    default_barter_percentage: float = 25.0
    unmatched_item_policy: str = "eligible"  # eligible | restricted

    # Outbound HTTP
    provider_http_timeout_seconds: float = 30.0
    provider_fetch_max_attempts: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0

    # Square Configuration
    square_application_id: str = ""
    square_application_secret: str = ""
    square_webhook_signature_key: str = ""

    # Shopify Configuration
    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_webhook_secret: str = ""
    shopify_api_version: str = "2024-01"

    # Clover Configuration
    clover_app_id: str = ""
    clover_app_secret: str = ""
    clover_environment: str = "sandbox"  # sandbox | production
    clover_webhook_verification_token: str = ""

    # Toast Configuration
    toast_client_id: str = ""
    toast_client_secret: str = ""
    toast_api_base_url: str = "https://ws-api.toasttab.com"
    toast_webhook_secret: str = ""

    # Lightspeed Configuration
    lightspeed_client_id: str = ""
    lightspeed_client_secret: str = ""
    lightspeed_webhook_secret: str = ""
    lightspeed_cash_payment_type_id: int = 1
    lightspeed_barter_payment_type_id: int = 4

    # Adyen Configuration
    adyen_hmac_key: str = ""  # hex encoded
    adyen_checkout_base_url: str = "https://checkout-test.adyen.com"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
