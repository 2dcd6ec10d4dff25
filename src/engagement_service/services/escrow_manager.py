"""Escrow payment records: creation on completion, approval, and release."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from engagement_service.core.exceptions import (
    AuthorizationError,
    GuardViolation,
    NotFoundError,
    ServiceError,
    UpstreamError,
    ValidationError,
)
from engagement_service.logging import get_logger
from engagement_service.services.lifecycle import (
    PaymentStatus,
    Role,
    new_id,
    now_iso,
    payment_sources_for,
)

if TYPE_CHECKING:
    from engagement_service.clients.payout_client import PayoutClient
    from engagement_service.services.actor_resolver import ActorResolver
    from engagement_service.services.engagement_store import EngagementStore
    from engagement_service.services.notification_dispatcher import NotificationDispatcher

_APPROVER_ROLES = (Role.PAYMENT_APPROVER, Role.ADMIN)

_DECISION_TARGETS = {
    "approve": PaymentStatus.APPROVED,
    "reject": PaymentStatus.REJECTED,
}

_MAX_NOTES_LENGTH = 2000


def _validate_notes(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Field 'notes' must be a string")
    if len(value) > _MAX_NOTES_LENGTH:
        raise ValidationError(f"Field 'notes' must be at most {_MAX_NOTES_LENGTH} characters")
    return value


def percentage_of(amount: int, pct: int) -> int:
    """Whole-percent share of an amount in minor units, rounded half up."""
    share = Decimal(amount) * Decimal(pct) / Decimal(100)
    return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_amounts(gross: int, platform_fee_pct: int, tax_pct: int) -> dict[str, int]:
    """
    Split a gross amount into platform fee, tax, and provider payout.

    Fee and tax are both taken from the gross amount. The payout is what
    remains, never negative.
    """
    platform_fee = percentage_of(gross, platform_fee_pct)
    tax = percentage_of(gross, tax_pct)
    return {
        "gross_amount": gross,
        "platform_fee": platform_fee,
        "tax": tax,
        "payout_amount": max(gross - platform_fee - tax, 0),
    }


class EscrowManager:
    """
    Owns the payment approval sub-machine.

    pending -> approved -> released, or pending -> rejected. Released and
    rejected payments are immutable. Rejecting a payment never touches the
    engagement it belongs to.
    """

    def __init__(
        self,
        store: EngagementStore,
        actors: ActorResolver,
        payout_client: PayoutClient,
        notifier: NotificationDispatcher,
        platform_fee_pct: int,
        tax_pct: int,
    ) -> None:
        self._store = store
        self._actors = actors
        self._payout_client = payout_client
        self._notifier = notifier
        self._platform_fee_pct = platform_fee_pct
        self._tax_pct = tax_pct
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _get_or_404(self, payment_id: str) -> dict[str, Any]:
        payment = self._store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("PAYMENT_NOT_FOUND", f"Payment '{payment_id}' not found")
        return payment

    def _provider_user_id(self, provider_id: str) -> str:
        provider = self._store.get_provider(provider_id)
        if provider is None:
            msg = f"Provider {provider_id} missing for payment"
            raise RuntimeError(msg)
        return str(provider["user_id"])

    def _resolve_lost_race(self, payment_id: str, target: PaymentStatus) -> dict[str, Any]:
        """Re-read after a conditional update matched no row."""
        current = self._get_or_404(payment_id)
        if current["status"] == target:
            return current
        raise GuardViolation(
            f"Payment is '{current['status']}', cannot move to '{target}'",
            details={"status": current["status"]},
        )

    async def _notify_parties(self, payment: dict[str, Any], event_type: str) -> None:
        payload = {
            "payment_id": payment["payment_id"],
            "engagement_id": payment["engagement_id"],
            "status": payment["status"],
            "payout_amount": payment["payout_amount"],
        }
        await self._notifier.dispatch(
            self._provider_user_id(payment["provider_id"]), event_type, payload
        )
        await self._notifier.dispatch(payment["client_id"], event_type, payload)

    # ------------------------------------------------------------------
    # Called by EngagementManager
    # ------------------------------------------------------------------

    def build_payment(self, engagement: dict[str, Any], created_at: str) -> dict[str, Any]:
        """Payment row for a just-completed engagement, in pending status."""
        amounts = compute_amounts(
            int(engagement["agreed_price"]), self._platform_fee_pct, self._tax_pct
        )
        return {
            "payment_id": new_id("pay"),
            "engagement_id": engagement["engagement_id"],
            "client_id": engagement["client_id"],
            "provider_id": engagement["provider_id"],
            **amounts,
            "status": PaymentStatus.PENDING.value,
            "approver_id": None,
            "approved_at": None,
            "rejected_at": None,
            "released_at": None,
            "payout_reference": None,
            "decision_notes": None,
            "created_at": created_at,
        }

    # ------------------------------------------------------------------
    # Public methods, called by routers
    # ------------------------------------------------------------------

    async def decide(
        self,
        payment_id: str,
        decision: str,
        notes: object,
        actor_id: str,
    ) -> dict[str, Any]:
        """
        Approve or reject a pending payment.

        A decision matching the current status returns the payment unchanged.
        """
        target = _DECISION_TARGETS.get(decision)
        if target is None:
            raise ValidationError(
                "decision must be 'approve' or 'reject'", details={"decision": decision}
            )
        notes = _validate_notes(notes)
        await self._actors.require(actor_id, *_APPROVER_ROLES)
        payment = self._get_or_404(payment_id)

        if payment["status"] == target:
            return payment
        if payment["status"] not in payment_sources_for(target):
            raise GuardViolation(
                f"Payment is '{payment['status']}', cannot move to '{target}'",
                details={"status": payment["status"]},
            )

        now = now_iso()
        updates: dict[str, Any] = {
            "status": target.value,
            "approver_id": actor_id,
            "decision_notes": notes,
        }
        if target == PaymentStatus.APPROVED:
            updates["approved_at"] = now
        else:
            updates["rejected_at"] = now

        changed = self._store.update_payment(
            payment_id, updates, expected_status=PaymentStatus.PENDING.value
        )
        if changed == 0:
            return self._resolve_lost_race(payment_id, target)

        updated = self._get_or_404(payment_id)
        self._logger.info(
            "Payment decided",
            extra={"payment_id": payment_id, "status": target.value, "approver_id": actor_id},
        )
        event = "payment_approved" if target == PaymentStatus.APPROVED else "payment_rejected"
        await self._notify_parties(updated, event)
        return updated

    async def release(self, payment_id: str, actor_id: str) -> dict[str, Any]:
        """
        Disburse an approved payment and mark it released.

        The payout collaborator is called before the status write. If it
        fails the payment stays approved and the call can be retried; the
        payment_id idempotency key prevents a double payout.
        """
        await self._actors.require(actor_id, *_APPROVER_ROLES)
        payment = self._get_or_404(payment_id)

        if payment["status"] == PaymentStatus.RELEASED:
            return payment
        if payment["status"] not in payment_sources_for(PaymentStatus.RELEASED):
            raise GuardViolation(
                f"Payment is '{payment['status']}', only approved payments can be released",
                details={"status": payment["status"]},
            )

        payout_amount = max(
            int(payment["gross_amount"]) - int(payment["platform_fee"]) - int(payment["tax"]),
            0,
        )
        try:
            result = await self._payout_client.disburse(
                payment_id=payment_id,
                recipient_user_id=self._provider_user_id(payment["provider_id"]),
                amount=payout_amount,
            )
        except ServiceError:
            raise
        except Exception as exc:
            raise UpstreamError(
                "PAYOUT_SERVICE_UNAVAILABLE",
                "Payout disbursement failed",
            ) from exc

        changed = self._store.update_payment(
            payment_id,
            {
                "status": PaymentStatus.RELEASED.value,
                "released_at": now_iso(),
                "payout_amount": payout_amount,
                "payout_reference": result.get("payout_id"),
            },
            expected_status=PaymentStatus.APPROVED.value,
        )
        if changed == 0:
            return self._resolve_lost_race(payment_id, PaymentStatus.RELEASED)

        updated = self._get_or_404(payment_id)
        self._logger.info(
            "Payment released",
            extra={
                "payment_id": payment_id,
                "payout_amount": payout_amount,
                "payout_reference": updated["payout_reference"],
            },
        )
        await self._notify_parties(updated, "payment_released")
        return updated

    async def get_payment(self, payment_id: str, actor_id: str) -> dict[str, Any]:
        """Approvers and admins see any payment; parties see their own."""
        actor = await self._actors.resolve(actor_id)
        payment = self._get_or_404(payment_id)
        role = actor.get("role")
        if role in _APPROVER_ROLES:
            return payment
        if role == Role.CLIENT and payment["client_id"] == actor_id:
            return payment
        if (
            role == Role.SERVICE_PROVIDER
            and self._provider_user_id(payment["provider_id"]) == actor_id
        ):
            return payment
        raise AuthorizationError("Only the payment's parties or approvers may view it")

    async def list_payments(self, actor_id: str, status: str | None) -> list[dict[str, Any]]:
        """List payments visible to the actor, optionally filtered by status."""
        if status is not None and status not in set(PaymentStatus):
            raise ValidationError(f"Unknown payment status '{status}'")
        actor = await self._actors.resolve(actor_id)
        role = actor.get("role")
        if role in _APPROVER_ROLES:
            return self._store.list_payments(status=status)
        if role == Role.CLIENT:
            return self._store.list_payments(status=status, client_id=actor_id)
        if role == Role.SERVICE_PROVIDER:
            provider = self._store.get_provider_by_user(actor_id)
            if provider is None:
                return []
            return self._store.list_payments(status=status, provider_id=provider["provider_id"])
        raise AuthorizationError(f"Role '{role}' may not list payments")
