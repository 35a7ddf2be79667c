"""Error translation for subscription use cases"""

import logging
from libs.result import Error
from src.app.services.billing_provider import (
    BillingProviderError,
    ProviderProtocolError,
    ProviderTransient,
)

logger = logging.getLogger(__name__)


class ConcurrentUpdateError(Exception):
    """Conditional write kept losing to concurrent writers"""

    def __init__(self, tenant_id: str, attempts: int):
        super().__init__(f"Subscription of tenant {tenant_id} changed concurrently {attempts} times")
        self.tenant_id = tenant_id
        self.attempts = attempts


def provider_error(e: BillingProviderError) -> Error:
    """
    Map a provider failure to a use-case Error

    Raw provider text stays in reason; the message is safe to show clients.
    """
    if isinstance(e, ProviderTransient):
        message = "Billing provider is temporarily unavailable. Please try again."
    elif isinstance(e, ProviderProtocolError):
        message = "Billing provider returned an unexpected response"
    else:
        message = e.message
    provider = e.provider.value if e.provider else "unknown"
    logger.warning(f"{provider} provider error {e.code}: {e.message}")
    return Error(code=e.code, message=message, reason=e.message)


def conflict_error(e: ConcurrentUpdateError) -> Error:
    return Error(
        code="CONCURRENT_UPDATE",
        message="Subscription was modified concurrently. Please retry.",
        reason=str(e),
    )


def internal_error(e: Exception, message: str) -> Error:
    logger.exception(f"{message}: {e}")
    return Error(code="INTERNAL_ERROR", message=message, reason=str(e))
