"""Provider configuration loaded from the environment."""

import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_WEBHOOK_TOLERANCE = 300
DEFAULT_WEBHOOK_ENDPOINT = "stripe/webhook"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class ProviderConfig(BaseModel):
    """Keys, webhook settings and sync toggles for one provider instance."""

    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    test_secret_key: Optional[str] = None
    test_publishable_key: Optional[str] = None
    livemode: bool = False

    webhook_secret: Optional[str] = None
    webhook_tolerance: int = DEFAULT_WEBHOOK_TOLERANCE
    webhook_endpoint: str = DEFAULT_WEBHOOK_ENDPOINT
    app_url: str = "http://localhost:8000"

    sync_refunds: bool = True
    sync_unsuccessful_charges: bool = False

    request_timeout: int = Field(default=30, ge=1)
    max_network_retries: int = Field(default=2, ge=0)

    tenant_id: str = "default"

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        """Build a configuration from environment variables.

        Returns:
            ProviderConfig populated from ``STRIPE_*``, ``APP_URL`` and
            ``PAYMENTS_TENANT_ID``.
        """
        return cls(
            secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            publishable_key=os.getenv("STRIPE_PUBLISHABLE_KEY") or None,
            test_secret_key=os.getenv("STRIPE_TEST_SECRET_KEY") or None,
            test_publishable_key=os.getenv("STRIPE_TEST_PUBLISHABLE_KEY") or None,
            livemode=_env_bool("STRIPE_LIVEMODE", False),
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            webhook_tolerance=int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", str(DEFAULT_WEBHOOK_TOLERANCE))),
            webhook_endpoint=os.getenv("STRIPE_WEBHOOK_ENDPOINT", DEFAULT_WEBHOOK_ENDPOINT),
            app_url=os.getenv("APP_URL", "http://localhost:8000"),
            sync_refunds=_env_bool("STRIPE_SYNC_REFUNDS", True),
            sync_unsuccessful_charges=_env_bool("STRIPE_SYNC_UNSUCCESSFUL_CHARGES", False),
            request_timeout=int(os.getenv("STRIPE_REQUEST_TIMEOUT", "30")),
            max_network_retries=int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2")),
            tenant_id=os.getenv("PAYMENTS_TENANT_ID", "default"),
        )

    @property
    def active_secret_key(self) -> Optional[str]:
        return self.secret_key if self.livemode else self.test_secret_key

    @property
    def active_publishable_key(self) -> Optional[str]:
        return self.publishable_key if self.livemode else self.test_publishable_key

    def webhook_url(self) -> str:
        """Absolute URL of the webhook endpoint."""
        endpoint = self.webhook_endpoint
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.app_url.rstrip('/')}/{endpoint.lstrip('/')}"
