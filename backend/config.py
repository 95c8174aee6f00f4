"""
Service settings.

Environment variables provide the defaults; rows in the app_config table
override the business settings at runtime (see crud.app_config).
"""
import os
from dataclasses import dataclass, replace
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Groups in the identity token that grant the seller role
SELLER_GROUPS = [g.strip() for g in os.getenv("SELLER_GROUPS", "seller,admin").split(",") if g.strip()]

# How often the background sweep looks for stale quotations
EXPIRY_SWEEP_INTERVAL_MINUTES = int(os.getenv("EXPIRY_SWEEP_INTERVAL_MINUTES", "60"))
EXPIRY_SWEEP_ENABLED = _env_bool("EXPIRY_SWEEP_ENABLED", "true")


@dataclass(frozen=True)
class QuotationSettings:
    tax_rate: Decimal = Decimal("0.085")
    validity_days: int = 30
    invoice_due_days: int = 30
    allow_backorder: bool = False
    lock_timeout_ms: int = 5000
    max_reservation_retries: int = 3
    retry_backoff_seconds: float = 0.2

    # Names of the app_config rows that may override each field
    CONFIG_KEYS = {
        "TAX_RATE": "tax_rate",
        "QUOTATION_VALIDITY_DAYS": "validity_days",
        "INVOICE_DUE_DAYS": "invoice_due_days",
        "ALLOW_BACKORDER": "allow_backorder",
        "RESERVATION_LOCK_TIMEOUT_MS": "lock_timeout_ms",
        "RESERVATION_MAX_RETRIES": "max_reservation_retries",
        "RESERVATION_RETRY_BACKOFF_SECONDS": "retry_backoff_seconds",
    }

    @classmethod
    def from_env(cls) -> "QuotationSettings":
        return cls(
            tax_rate=Decimal(os.getenv("TAX_RATE", "0.085")),
            validity_days=int(os.getenv("QUOTATION_VALIDITY_DAYS", "30")),
            invoice_due_days=int(os.getenv("INVOICE_DUE_DAYS", "30")),
            allow_backorder=_env_bool("ALLOW_BACKORDER"),
            lock_timeout_ms=int(os.getenv("RESERVATION_LOCK_TIMEOUT_MS", "5000")),
            max_reservation_retries=int(os.getenv("RESERVATION_MAX_RETRIES", "3")),
            retry_backoff_seconds=float(os.getenv("RESERVATION_RETRY_BACKOFF_SECONDS", "0.2")),
        )

    def with_overrides(self, values: dict) -> "QuotationSettings":
        """Apply raw string values keyed by app_config name."""
        changes = {}
        for key, raw in values.items():
            field = self.CONFIG_KEYS.get(key)
            if field is None or raw is None:
                continue
            current = getattr(self, field)
            if isinstance(current, bool):
                changes[field] = str(raw).strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, Decimal):
                changes[field] = Decimal(str(raw))
            elif isinstance(current, int):
                changes[field] = int(raw)
            else:
                changes[field] = float(raw)
        return replace(self, **changes)
