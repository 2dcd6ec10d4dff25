"""Async HTTP client for the payout processor."""

from __future__ import annotations

from typing import Any

import httpx

from engagement_service.core.exceptions import UpstreamError
from engagement_service.logging import get_logger


class PayoutClient:
    """
    Client for disbursing released escrow payments.

    The payment_id is sent as the idempotency key, so a release retried
    after a lost response does not pay the provider twice.
    """

    def __init__(
        self,
        base_url: str,
        payout_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._payout_path = payout_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def disburse(
        self,
        payment_id: str,
        recipient_user_id: str,
        amount: int,
    ) -> dict[str, Any]:
        """
        Disburse a payout to a provider.

        Args:
            payment_id: Payment record ID, used as idempotency key
            recipient_user_id: User directory ID of the provider
            amount: Payout amount in minor currency units

        Returns:
            dict with keys: payout_id, status

        Raises:
            UpstreamError: PAYOUT_SERVICE_UNAVAILABLE on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._payout_path,
                json={
                    "payment_id": payment_id,
                    "recipient_user_id": recipient_user_id,
                    "amount": amount,
                },
                headers={"Idempotency-Key": payment_id},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payout service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamError(
                "PAYOUT_SERVICE_UNAVAILABLE",
                "Cannot connect to payout service",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payout service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamError(
                "PAYOUT_SERVICE_UNAVAILABLE",
                "Payout service request failed",
            ) from exc

        if response.status_code not in (200, 201):
            logger.warning(
                "Payout service unexpected status",
                extra={"status_code": response.status_code, "payment_id": payment_id},
            )
            raise UpstreamError(
                "PAYOUT_SERVICE_UNAVAILABLE",
                "Payout service returned unexpected status",
                {"status_code": response.status_code},
            )

        result: dict[str, Any] = response.json()
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
