"""Typed failures raised by the generation pipeline.

Routes translate these into HTTP responses; nothing in the services layer
returns error tuples for conditions the caller must act on.
"""
from decimal import Decimal
from typing import Optional


class GenerationError(Exception):
    """Base exception for content generation and metering."""
    pass


class NoCredentialsAvailable(GenerationError):
    """No usable provider API key is configured."""

    def __init__(self):
        super().__init__("No valid GEMINI_API_KEY found.")


class AllCredentialsExhausted(GenerationError):
    """Every configured key was tried and every attempt failed."""

    def __init__(self, attempts: int, last_error: Optional[str], status_code: Optional[int] = None):
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = status_code
        self.message = (
            f"Failed to generate content after trying {attempts} keys. "
            f"Last error: {last_error}"
        )
        super().__init__(self.message)


class RateLimited(AllCredentialsExhausted):
    """Provider signalled rate limiting on the final attempt (HTTP 429)."""
    pass


class BillingRequired(GenerationError):
    """Credits are used up and no active usage plan exists (enforcing mode only)."""

    def __init__(self, shop: str, billable: int, charge_amount: Decimal):
        self.shop = shop
        self.billable = billable
        self.charge_amount = charge_amount
        self.message = "No active billing plan. Please upgrade your plan to continue generating."
        super().__init__(self.message)


class BillingQueryFailed(GenerationError):
    """The platform billing API could not be queried or rejected the request."""
    pass


class LedgerWriteFailed(GenerationError):
    """A usage update could not be durably applied."""

    def __init__(self, shop: str, reason: str, decision=None):
        self.shop = shop
        self.reason = reason
        self.decision = decision
        super().__init__(f"Usage update failed for {shop}: {reason}")


class InvalidGenerationOutput(GenerationError):
    """Model output did not match the expected format."""
    pass
