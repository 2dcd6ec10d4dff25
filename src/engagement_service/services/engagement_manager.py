"""Engagement lifecycle management: interest, approval, execution, completion."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from engagement_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GuardViolation,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from engagement_service.logging import get_logger
from engagement_service.services.disclosure import render_view
from engagement_service.services.engagement_store import (
    CommittedTaskError,
    DuplicateEngagementError,
    DuplicatePaymentError,
    DuplicateReviewError,
)
from engagement_service.services.lifecycle import (
    COMMITTED_ENGAGEMENT_STATUSES,
    STAFF_ROLES,
    EngagementStatus,
    PaymentStatus,
    Role,
    TaskStatus,
    VerificationStatus,
    new_id,
    now_iso,
    sources_for,
)

if TYPE_CHECKING:
    from engagement_service.services.actor_resolver import ActorResolver
    from engagement_service.services.engagement_store import EngagementStore
    from engagement_service.services.escrow_manager import EscrowManager
    from engagement_service.services.notification_dispatcher import NotificationDispatcher
    from engagement_service.services.verification_gate import VerificationGate

_DECISION_TARGETS = {
    "approve": EngagementStatus.APPROVED,
    "reject": EngagementStatus.REJECTED,
}

_MAX_MESSAGE_LENGTH = 2000
_MAX_COMMENT_LENGTH = 2000


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_optional_text(value: object, field_name: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be a string")
    if len(value) > max_length:
        raise ValidationError(f"Field '{field_name}' must be at most {max_length} characters")
    return value


class EngagementManager:
    """
    Drives the engagement state machine.

    Every transition checks the actor's role, then the current status
    against the transition table, then writes conditionally on the status
    it read. A transition whose target equals the current status returns
    the engagement unchanged. Notifications go out after the write commits.
    """

    def __init__(
        self,
        store: EngagementStore,
        actors: ActorResolver,
        verification_gate: VerificationGate,
        escrow_manager: EscrowManager,
        notifier: NotificationDispatcher,
    ) -> None:
        self._store = store
        self._actors = actors
        self._verification_gate = verification_gate
        self._escrow_manager = escrow_manager
        self._notifier = notifier
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _get_or_404(self, engagement_id: str) -> dict[str, Any]:
        engagement = self._store.get_engagement(engagement_id)
        if engagement is None:
            raise NotFoundError(
                "ENGAGEMENT_NOT_FOUND", f"Engagement '{engagement_id}' not found"
            )
        return engagement

    def _provider_for(self, engagement: dict[str, Any]) -> dict[str, Any]:
        provider = self._store.get_provider(engagement["provider_id"])
        if provider is None:
            msg = f"Provider {engagement['provider_id']} missing for engagement"
            raise RuntimeError(msg)
        return provider

    def _require_client(self, engagement: dict[str, Any], actor_id: str) -> None:
        if engagement["client_id"] != actor_id:
            raise AuthorizationError("Only the task's client may perform this operation")

    def _require_provider(self, engagement: dict[str, Any], actor_id: str) -> dict[str, Any]:
        provider = self._provider_for(engagement)
        if provider["user_id"] != actor_id:
            raise AuthorizationError("Only the engaged provider may perform this operation")
        return provider

    @staticmethod
    def _check_transition(engagement: dict[str, Any], target: EngagementStatus) -> bool:
        """
        Return False for a no-op (already at target), True if the move is legal.

        Raises GuardViolation for any other move.
        """
        current = engagement["status"]
        if current == target:
            return False
        if current not in sources_for(target):
            raise GuardViolation(
                f"Engagement is '{current}', cannot move to '{target}'",
                details={"status": current, "target": target.value},
            )
        return True

    def _resolve_lost_race(
        self,
        engagement_id: str,
        target: EngagementStatus,
    ) -> dict[str, Any]:
        """
        Re-read after a conditional update matched no row.

        Same target means a concurrent duplicate succeeded, which is reported
        as success. Otherwise the caller lost to a different transition.
        """
        current = self._get_or_404(engagement_id)
        if current["status"] == target:
            return current
        raise GuardViolation(
            f"Engagement moved to '{current['status']}' concurrently",
            details={"status": current["status"], "target": target.value},
        )

    def _write_transition(
        self,
        engagement: dict[str, Any],
        target: EngagementStatus,
        updates: dict[str, Any],
    ) -> tuple[dict[str, Any], bool]:
        engagement_id = engagement["engagement_id"]
        changed = self._store.update_engagement(
            engagement_id,
            {"status": target.value, **updates},
            expected_statuses=(engagement["status"],),
        )
        if changed == 0:
            return self._resolve_lost_race(engagement_id, target), False
        updated = self._get_or_404(engagement_id)
        self._log_transition(engagement, target)
        return updated, True

    def _log_transition(self, engagement: dict[str, Any], target: EngagementStatus) -> None:
        self._logger.info(
            "Engagement transition",
            extra={
                "engagement_id": engagement["engagement_id"],
                "task_id": engagement["task_id"],
                "from": engagement["status"],
                "to": target.value,
            },
        )

    async def _notify_parties(self, engagement: dict[str, Any], event_type: str) -> None:
        payload = {
            "engagement_id": engagement["engagement_id"],
            "task_id": engagement["task_id"],
            "status": engagement["status"],
        }
        provider = self._provider_for(engagement)
        await self._notifier.dispatch(provider["user_id"], event_type, payload)
        await self._notifier.dispatch(engagement["client_id"], event_type, payload)
        await self._notifier.dispatch(engagement["call_center_id"], event_type, payload)

    async def _assign_call_center(self, engagement: dict[str, Any]) -> dict[str, Any]:
        """
        Route a new engagement to the least-loaded call-center agent.

        Directory failures or an empty roster leave the engagement
        unassigned; any agent can still decide it.
        """
        try:
            agents = await self._actors.list_users(Role.CALL_CENTER)
        except ServiceError as exc:
            self._logger.warning(
                "Call-center assignment skipped",
                extra={"engagement_id": engagement["engagement_id"], "error_code": exc.error},
            )
            return engagement

        agent_ids = [str(agent["user_id"]) for agent in agents if agent.get("user_id")]
        if not agent_ids:
            self._logger.warning(
                "No call-center agents available",
                extra={"engagement_id": engagement["engagement_id"]},
            )
            return engagement

        loads = self._store.count_open_assignments(agent_ids)
        agent_id = min(agent_ids, key=lambda candidate: (loads[candidate], candidate))
        changed = self._store.update_engagement(
            engagement["engagement_id"],
            {"call_center_id": agent_id, "assigned_at": now_iso()},
            expected_statuses=(EngagementStatus.PENDING.value,),
        )
        if changed == 0:
            return self._get_or_404(engagement["engagement_id"])

        self._logger.info(
            "Engagement assigned to call center",
            extra={"engagement_id": engagement["engagement_id"], "call_center_id": agent_id},
        )
        return self._get_or_404(engagement["engagement_id"])

    # ------------------------------------------------------------------
    # Interest
    # ------------------------------------------------------------------

    async def submit_interest(
        self,
        task_id: str,
        actor_id: str,
        message: object = None,
        offer_amount: object = None,
    ) -> tuple[dict[str, Any], bool]:
        """
        Record a provider's interest in a task.

        Returns the engagement and whether it was created. A retry for a
        (task, provider) pair that already has a non-terminal engagement
        returns that engagement unchanged.
        """
        text = _validate_optional_text(message, "message", _MAX_MESSAGE_LENGTH)
        if offer_amount is not None and not _is_positive_int(offer_amount):
            raise ValidationError("Field 'offer_amount' must be a positive integer")

        await self._actors.require(actor_id, Role.SERVICE_PROVIDER)

        task = self._store.get_task(task_id)
        if task is None or task["deleted_at"] is not None:
            raise NotFoundError("TASK_NOT_FOUND", f"Task '{task_id}' not found")

        provider = self._store.get_provider_by_user(actor_id)
        if provider is None:
            raise NotFoundError(
                "PROVIDER_NOT_FOUND", "Actor has no provider profile; register first"
            )

        if task["client_id"] == actor_id:
            raise AuthorizationError("A client cannot express interest in their own task")

        existing = self._store.find_active_engagement(task_id, provider["provider_id"])
        if existing is not None:
            return existing, False

        if task["status"] != TaskStatus.OPEN:
            raise GuardViolation(
                f"Task is '{task['status']}', interest requires an open task",
                error="TASK_NOT_OPEN",
            )
        if provider["verification_status"] != VerificationStatus.VERIFIED:
            raise GuardViolation(
                "Provider must be verified to express interest",
                error="PROVIDER_NOT_VERIFIED",
                details={"verification_status": provider["verification_status"]},
            )

        price = offer_amount if offer_amount is not None else task["budget"]
        if price is None:
            raise ValidationError(
                "offer_amount is required when the task has no budget", "PRICE_REQUIRED"
            )

        now = now_iso()
        engagement_data: dict[str, Any] = {
            "engagement_id": new_id("eng"),
            "task_id": task_id,
            "provider_id": provider["provider_id"],
            "client_id": task["client_id"],
            "status": EngagementStatus.PENDING.value,
            "message": text,
            "agreed_price": price,
            "call_center_id": None,
            "assigned_at": None,
            "accepted_at": None,
            "approver_id": None,
            "approved_at": None,
            "decision_notes": None,
            "rejected_at": None,
            "started_at": None,
            "completed_at": None,
            "cancelled_at": None,
            "created_at": now,
        }
        try:
            self._store.insert_engagement(engagement_data)
        except DuplicateEngagementError as exc:
            existing = self._store.find_active_engagement(task_id, provider["provider_id"])
            if existing is not None:
                return existing, False
            raise ConflictError("Concurrent interest submission, retry") from exc

        self._logger.info(
            "Interest submitted",
            extra={
                "engagement_id": engagement_data["engagement_id"],
                "task_id": task_id,
                "provider_id": provider["provider_id"],
            },
        )

        engagement = await self._assign_call_center(engagement_data)
        payload = {
            "engagement_id": engagement["engagement_id"],
            "task_id": task_id,
            "task_title": task["title"],
        }
        await self._notifier.dispatch(
            engagement["call_center_id"], "call_center_assignment", payload
        )
        await self._notifier.dispatch(task["client_id"], "interest_submitted", payload)
        return engagement, True

    async def accept_interest(self, engagement_id: str, actor_id: str) -> dict[str, Any]:
        """Client shortlists an interest for call-center approval."""
        await self._actors.require(actor_id, Role.CLIENT)
        engagement = self._get_or_404(engagement_id)
        self._require_client(engagement, actor_id)
        if not self._check_transition(engagement, EngagementStatus.ACCEPTED):
            return engagement

        updated, changed = self._write_transition(
            engagement, EngagementStatus.ACCEPTED, {"accepted_at": now_iso()}
        )
        if changed:
            await self._notify_parties(updated, "engagement_accepted")
        return updated

    async def decline_interest(
        self,
        engagement_id: str,
        actor_id: str,
        notes: object = None,
    ) -> dict[str, Any]:
        """Client turns down an interest before it is approved."""
        text = _validate_optional_text(notes, "notes", _MAX_MESSAGE_LENGTH)
        await self._actors.require(actor_id, Role.CLIENT)
        engagement = self._get_or_404(engagement_id)
        self._require_client(engagement, actor_id)
        if not self._check_transition(engagement, EngagementStatus.REJECTED):
            return engagement

        updated, changed = self._write_transition(
            engagement,
            EngagementStatus.REJECTED,
            {"rejected_at": now_iso(), "decision_notes": text},
        )
        if changed:
            await self._notify_parties(updated, "engagement_rejected")
        return updated

    # ------------------------------------------------------------------
    # Call-center decision
    # ------------------------------------------------------------------

    async def decide(
        self,
        engagement_id: str,
        decision: str,
        notes: object,
        actor_id: str,
    ) -> dict[str, Any]:
        """
        Approve or reject an engagement on behalf of the platform.

        Approval commits the task to this engagement and moves the task to
        in_progress in the same transaction. A second approval on the same
        task is a ConflictError.
        """
        target = _DECISION_TARGETS.get(decision)
        if target is None:
            raise ValidationError(
                "decision must be 'approve' or 'reject'", details={"decision": decision}
            )
        text = _validate_optional_text(notes, "notes", _MAX_MESSAGE_LENGTH)

        await self._actors.require(actor_id, *STAFF_ROLES)
        engagement = self._get_or_404(engagement_id)
        if not self._check_transition(engagement, target):
            return engagement

        now = now_iso()
        if target == EngagementStatus.REJECTED:
            updated, changed = self._write_transition(
                engagement,
                target,
                {"approver_id": actor_id, "rejected_at": now, "decision_notes": text},
            )
            if changed:
                await self._notify_parties(updated, "engagement_rejected")
            return updated

        if not self._verification_gate.is_verified(engagement["provider_id"]):
            raise GuardViolation(
                "Provider is no longer verified",
                error="PROVIDER_NOT_VERIFIED",
            )

        try:
            changed_rows = self._store.approve_engagement(
                engagement_id,
                engagement["task_id"],
                {
                    "status": target.value,
                    "approver_id": actor_id,
                    "approved_at": now,
                    "decision_notes": text,
                },
                expected_statuses=(engagement["status"],),
            )
        except CommittedTaskError as exc:
            current = self._get_or_404(engagement_id)
            if current["status"] == target:
                return current
            raise ConflictError(
                "Task is already committed to another engagement",
                details={"task_id": engagement["task_id"]},
            ) from exc

        if changed_rows == 0:
            return self._resolve_lost_race(engagement_id, target)

        updated = self._get_or_404(engagement_id)
        self._log_transition(engagement, target)
        await self._notify_parties(updated, "engagement_approved")
        return updated

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def start(self, engagement_id: str, actor_id: str) -> dict[str, Any]:
        """Provider begins work on an approved engagement."""
        await self._actors.require(actor_id, Role.SERVICE_PROVIDER)
        engagement = self._get_or_404(engagement_id)
        self._require_provider(engagement, actor_id)
        if not self._check_transition(engagement, EngagementStatus.IN_PROGRESS):
            return engagement

        updated, changed = self._write_transition(
            engagement, EngagementStatus.IN_PROGRESS, {"started_at": now_iso()}
        )
        if changed:
            await self._notify_parties(updated, "work_started")
        return updated

    async def complete(self, engagement_id: str, actor_id: str) -> dict[str, Any]:
        """
        Mark work completed and open the escrow payment record.

        The engagement, the payment row, the task status and the provider's
        completed job count change in one transaction.
        """
        actor = await self._actors.require(actor_id, Role.CLIENT, Role.SERVICE_PROVIDER)
        engagement = self._get_or_404(engagement_id)
        if actor["role"] == Role.CLIENT:
            self._require_client(engagement, actor_id)
        else:
            self._require_provider(engagement, actor_id)

        if not self._check_transition(engagement, EngagementStatus.COMPLETED):
            return self._with_payment(engagement)

        now = now_iso()
        payment_data = self._escrow_manager.build_payment(engagement, now)
        try:
            changed = self._store.complete_engagement(
                engagement_id,
                {"status": EngagementStatus.COMPLETED.value, "completed_at": now},
                payment_data,
            )
        except DuplicatePaymentError as exc:
            raise ConflictError("Engagement already has a payment record") from exc

        if changed == 0:
            return self._with_payment(
                self._resolve_lost_race(engagement_id, EngagementStatus.COMPLETED)
            )

        updated = self._get_or_404(engagement_id)
        self._log_transition(engagement, EngagementStatus.COMPLETED)
        self._logger.info(
            "Payment record created",
            extra={
                "payment_id": payment_data["payment_id"],
                "engagement_id": engagement_id,
                "gross_amount": payment_data["gross_amount"],
            },
        )

        await self._notify_parties(updated, "work_completed")
        try:
            approvers = await self._actors.list_users(Role.PAYMENT_APPROVER)
        except ServiceError as exc:
            self._logger.warning(
                "Could not notify payment approvers",
                extra={"payment_id": payment_data["payment_id"], "error_code": exc.error},
            )
            approvers = []
        await self._notifier.dispatch_many(
            [str(approver["user_id"]) for approver in approvers if approver.get("user_id")],
            "payment_pending",
            {"payment_id": payment_data["payment_id"], "engagement_id": engagement_id},
        )
        return self._with_payment(updated)

    def _with_payment(self, engagement: dict[str, Any]) -> dict[str, Any]:
        return {
            **engagement,
            "payment": self._store.get_payment_by_engagement(engagement["engagement_id"]),
        }

    async def cancel(
        self,
        engagement_id: str,
        actor_id: str,
        reason: object = None,
    ) -> dict[str, Any]:
        """
        Client cancels a non-terminal engagement.

        If the engagement held the task (approved or in progress) the task
        goes back to open.
        """
        text = _validate_optional_text(reason, "reason", _MAX_MESSAGE_LENGTH)
        await self._actors.require(actor_id, Role.CLIENT)
        engagement = self._get_or_404(engagement_id)
        self._require_client(engagement, actor_id)

        payment = self._store.get_payment_by_engagement(engagement_id)
        if payment is not None and payment["status"] == PaymentStatus.RELEASED:
            raise GuardViolation(
                "Payment already released, engagement cannot be cancelled",
                error="PAYMENT_RELEASED",
            )
        if not self._check_transition(engagement, EngagementStatus.CANCELLED):
            return engagement

        updates = {
            "status": EngagementStatus.CANCELLED.value,
            "cancelled_at": now_iso(),
            "decision_notes": text,
        }
        if engagement["status"] in COMMITTED_ENGAGEMENT_STATUSES:
            changed = self._store.release_task_commitment(
                engagement_id,
                engagement["task_id"],
                updates,
                expected_statuses=(engagement["status"],),
            )
        else:
            changed = self._store.update_engagement(
                engagement_id, updates, expected_statuses=(engagement["status"],)
            )
        if changed == 0:
            return self._resolve_lost_race(engagement_id, EngagementStatus.CANCELLED)

        updated = self._get_or_404(engagement_id)
        self._log_transition(engagement, EngagementStatus.CANCELLED)
        await self._notify_parties(updated, "engagement_cancelled")
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_engagement(self, engagement_id: str, actor_id: str) -> dict[str, Any]:
        """
        Return the engagement with the counterparty view for the actor.

        The view is recomputed from the current status on every read.
        """
        actor = await self._actors.resolve(actor_id)
        engagement = self._get_or_404(engagement_id)
        provider = self._provider_for(engagement)

        role = actor.get("role")
        if role == Role.CLIENT:
            self._require_client(engagement, actor_id)
        elif role == Role.SERVICE_PROVIDER:
            if provider["user_id"] != actor_id:
                raise AuthorizationError("Only the engaged provider may view this engagement")
        elif role not in STAFF_ROLES:
            raise AuthorizationError(f"Role '{role}' may not view engagements")

        task = self._store.get_task(engagement["task_id"])
        if task is None:
            msg = f"Task {engagement['task_id']} missing for engagement"
            raise RuntimeError(msg)
        client = await self._actors.get_user(engagement["client_id"])
        provider_user = await self._actors.get_user(provider["user_id"])

        view = render_view(engagement, task, client, provider_user, provider, str(role))
        return {**engagement, **view}

    async def list_engagements(
        self,
        actor_id: str,
        *,
        task_id: str | None = None,
        status: str | None = None,
        assigned_to_me: bool = False,
    ) -> list[dict[str, Any]]:
        """
        List engagements scoped to the actor. Staff see all.

        assigned_to_me narrows a staff listing to the engagements the actor
        was assigned as call-center agent.
        """
        if status is not None and status not in set(EngagementStatus):
            raise ValidationError(f"Unknown engagement status '{status}'")
        actor = await self._actors.resolve(actor_id)
        role = actor.get("role")
        if role in STAFF_ROLES:
            return self._store.list_engagements(
                task_id=task_id,
                status=status,
                call_center_id=actor_id if assigned_to_me else None,
            )
        if assigned_to_me:
            raise AuthorizationError("Only call-center staff have an assignment queue")
        if role == Role.CLIENT:
            return self._store.list_engagements(
                task_id=task_id, client_id=actor_id, status=status
            )
        if role == Role.SERVICE_PROVIDER:
            provider = self._store.get_provider_by_user(actor_id)
            if provider is None:
                return []
            return self._store.list_engagements(
                task_id=task_id, provider_id=provider["provider_id"], status=status
            )
        raise AuthorizationError(f"Role '{role}' may not list engagements")

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def submit_review(
        self,
        engagement_id: str,
        actor_id: str,
        rating: object,
        comment: object = None,
    ) -> dict[str, Any]:
        """Client rates a completed engagement once; folds into the provider rating."""
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise ValidationError("Field 'rating' must be an integer from 1 to 5")
        text = _validate_optional_text(comment, "comment", _MAX_COMMENT_LENGTH)

        await self._actors.require(actor_id, Role.CLIENT)
        engagement = self._get_or_404(engagement_id)
        self._require_client(engagement, actor_id)
        if engagement["status"] != EngagementStatus.COMPLETED:
            raise GuardViolation(
                "Only completed engagements can be reviewed",
                details={"status": engagement["status"]},
            )

        review = {
            "review_id": new_id("rev"),
            "engagement_id": engagement_id,
            "client_id": actor_id,
            "provider_id": engagement["provider_id"],
            "rating": rating,
            "comment": text,
            "created_at": now_iso(),
        }
        try:
            self._store.insert_review(review)
        except DuplicateReviewError as exc:
            raise ConflictError(
                "This engagement has already been reviewed", "ALREADY_REVIEWED"
            ) from exc

        self._logger.info(
            "Review submitted",
            extra={"engagement_id": engagement_id, "provider_id": engagement["provider_id"]},
        )
        return review
