"""
Billing Gateway - read access to the shop's app subscription, plus usage
charge submission for deployments where billing is enforced.

The platform's managed pricing mode forbids creating usage records from the
app, so in advisory mode only find_usage_line_item() is ever called.
"""
import os
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Dict, Any

import httpx

from services.errors import BillingQueryFailed

logger = logging.getLogger(__name__)

SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2024-10")

ACTIVE_SUBSCRIPTIONS_QUERY = """
query {
  currentAppInstallation {
    activeSubscriptions {
      id
      name
      lineItems {
        id
        plan {
          pricingDetails {
            ... on AppUsagePricing {
              terms
            }
          }
        }
      }
    }
  }
}
"""

USAGE_RECORD_CREATE_MUTATION = """
mutation appUsageRecordCreate($idempotencyKey: String!, $subscriptionLineItemId: ID!, $description: String!, $price: MoneyInput!) {
  appUsageRecordCreate(idempotencyKey: $idempotencyKey, subscriptionLineItemId: $subscriptionLineItemId, description: $description, price: $price) {
    userErrors {
      field
      message
    }
    appUsageRecord {
      id
    }
  }
}
"""


class BillingGateway(ABC):
    """Abstract billing interface consumed by the metering gate."""

    @abstractmethod
    async def find_usage_line_item(self) -> Optional[str]:
        """Return the first active subscription line item with usage pricing, or None."""
        pass

    @abstractmethod
    async def create_usage_charge(
        self,
        line_item_id: str,
        amount: Decimal,
        description: str,
        idempotency_key: str,
    ) -> Optional[str]:
        """Submit a usage charge. Returns the usage record id, or None if rejected."""
        pass


def first_usage_line_item(data: Dict[str, Any]) -> Optional[str]:
    """Pick the first line item whose plan carries usage pricing terms."""
    installation = (data or {}).get("currentAppInstallation") or {}
    for subscription in installation.get("activeSubscriptions") or []:
        for item in subscription.get("lineItems") or []:
            pricing = (item.get("plan") or {}).get("pricingDetails") or {}
            if pricing.get("terms"):
                return item["id"]
    return None


class AdminGraphQLBillingGateway(BillingGateway):
    """Billing gateway over the platform Admin GraphQL API."""

    def __init__(self, shop: str, access_token: str, timeout: float = 10.0):
        self.shop = shop
        self.access_token = access_token
        self.timeout = timeout
        self.url = f"https://{shop}/admin/api/{SHOPIFY_API_VERSION}/graphql.json"

    async def _execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise BillingQueryFailed(f"Billing API request failed: {e}") from e

        if response.status_code != 200:
            raise BillingQueryFailed(f"Billing API error {response.status_code}: {response.text[:500]}")

        body = response.json()
        if body.get("errors"):
            raise BillingQueryFailed(f"Billing API returned errors: {body['errors']}")
        return body.get("data") or {}

    async def find_usage_line_item(self) -> Optional[str]:
        data = await self._execute(ACTIVE_SUBSCRIPTIONS_QUERY)
        return first_usage_line_item(data)

    async def create_usage_charge(
        self,
        line_item_id: str,
        amount: Decimal,
        description: str,
        idempotency_key: str,
    ) -> Optional[str]:
        data = await self._execute(
            USAGE_RECORD_CREATE_MUTATION,
            {
                "idempotencyKey": idempotency_key,
                "subscriptionLineItemId": line_item_id,
                "description": description,
                "price": {"amount": str(amount), "currencyCode": "USD"},
            },
        )
        result = data.get("appUsageRecordCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            logger.error(f"[Billing] Usage record rejected for {self.shop}: {user_errors}")
            return None

        record_id = (result.get("appUsageRecord") or {}).get("id")
        logger.info(f"[Billing] Usage record created for {self.shop}: {record_id}")
        return record_id
