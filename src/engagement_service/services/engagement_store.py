"""SQLite-backed storage for tasks, providers, documents, engagements, and payments."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from engagement_service.services.lifecycle import (
    ACTIVE_ENGAGEMENT_STATUSES,
    COMMITTED_ENGAGEMENT_STATUSES,
    DocumentStatus,
    EngagementStatus,
    VerificationStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class DuplicateProviderError(Exception):
    """Raised when a user already owns a provider profile."""


class DuplicateEngagementError(Exception):
    """Raised when a (task, provider) pair already has a non-terminal engagement."""


class CommittedTaskError(Exception):
    """Raised when a task already has an approved-or-later engagement."""


class DuplicatePaymentError(Exception):
    """Raised when an engagement already has a payment record."""


class DuplicateReviewError(Exception):
    """Raised when an engagement has already been reviewed."""


def _status_list(statuses: Iterable[str]) -> str:
    return ", ".join(f"'{status}'" for status in sorted(statuses))


_TASK_COLUMNS: tuple[str, ...] = (
    "task_id",
    "client_id",
    "category_id",
    "title",
    "description",
    "latitude",
    "longitude",
    "address",
    "budget",
    "status",
    "created_at",
    "completed_at",
    "deleted_at",
)

_PROVIDER_COLUMNS: tuple[str, ...] = (
    "provider_id",
    "user_id",
    "category_id",
    "hourly_rate",
    "latitude",
    "longitude",
    "available",
    "bio",
    "verification_status",
    "verified_at",
    "rating",
    "review_count",
    "completed_jobs",
    "created_at",
)

_DOCUMENT_COLUMNS: tuple[str, ...] = (
    "document_id",
    "provider_id",
    "document_type",
    "storage_ref",
    "original_name",
    "status",
    "verifier_id",
    "verified_at",
    "notes",
    "uploaded_at",
    "superseded_by",
)

_ENGAGEMENT_COLUMNS: tuple[str, ...] = (
    "engagement_id",
    "task_id",
    "provider_id",
    "client_id",
    "status",
    "message",
    "agreed_price",
    "call_center_id",
    "assigned_at",
    "accepted_at",
    "approver_id",
    "approved_at",
    "decision_notes",
    "rejected_at",
    "started_at",
    "completed_at",
    "cancelled_at",
    "created_at",
)

_PAYMENT_COLUMNS: tuple[str, ...] = (
    "payment_id",
    "engagement_id",
    "client_id",
    "provider_id",
    "gross_amount",
    "platform_fee",
    "tax",
    "payout_amount",
    "status",
    "approver_id",
    "approved_at",
    "rejected_at",
    "released_at",
    "payout_reference",
    "decision_notes",
    "created_at",
)

_REVIEW_COLUMNS: tuple[str, ...] = (
    "review_id",
    "engagement_id",
    "client_id",
    "provider_id",
    "rating",
    "comment",
    "created_at",
)


class EngagementStore:
    """
    SQLite-backed storage for the engagement engine.

    Every status write is a conditional update keyed on the expected
    current status. Multi-row transitions run inside BEGIN IMMEDIATE
    transactions. Partial unique indexes back the uniqueness invariants.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        active = _status_list(ACTIVE_ENGAGEMENT_STATUSES)
        committed = _status_list(COMMITTED_ENGAGEMENT_STATUSES)
        with self._lock:
            self._db.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    address TEXT,
                    budget INTEGER,
                    status TEXT NOT NULL DEFAULT 'open',
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    deleted_at TEXT
                );

                CREATE TABLE IF NOT EXISTS providers (
                    provider_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    category_id TEXT NOT NULL,
                    hourly_rate INTEGER NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    available INTEGER NOT NULL DEFAULT 1,
                    bio TEXT,
                    verification_status TEXT NOT NULL DEFAULT 'unverified',
                    verified_at TEXT,
                    rating REAL,
                    review_count INTEGER NOT NULL DEFAULT 0,
                    completed_jobs INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS documents (
                    document_id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL REFERENCES providers(provider_id),
                    document_type TEXT NOT NULL,
                    storage_ref TEXT NOT NULL,
                    original_name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    verifier_id TEXT,
                    verified_at TEXT,
                    notes TEXT,
                    uploaded_at TEXT NOT NULL,
                    superseded_by TEXT
                );

                CREATE TABLE IF NOT EXISTS engagements (
                    engagement_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    provider_id TEXT NOT NULL REFERENCES providers(provider_id),
                    client_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    message TEXT,
                    agreed_price INTEGER NOT NULL,
                    call_center_id TEXT,
                    assigned_at TEXT,
                    accepted_at TEXT,
                    approver_id TEXT,
                    approved_at TEXT,
                    decision_notes TEXT,
                    rejected_at TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    cancelled_at TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_engagements_active_pair
                    ON engagements(task_id, provider_id) WHERE status IN ({active});

                CREATE UNIQUE INDEX IF NOT EXISTS ux_engagements_committed_task
                    ON engagements(task_id) WHERE status IN ({committed});

                CREATE TABLE IF NOT EXISTS payments (
                    payment_id TEXT PRIMARY KEY,
                    engagement_id TEXT NOT NULL UNIQUE REFERENCES engagements(engagement_id),
                    client_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    gross_amount INTEGER NOT NULL,
                    platform_fee INTEGER NOT NULL,
                    tax INTEGER NOT NULL,
                    payout_amount INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    approver_id TEXT,
                    approved_at TEXT,
                    rejected_at TEXT,
                    released_at TEXT,
                    payout_reference TEXT,
                    decision_notes TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    review_id TEXT PRIMARY KEY,
                    engagement_id TEXT NOT NULL UNIQUE REFERENCES engagements(engagement_id),
                    client_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL REFERENCES providers(provider_id),
                    rating INTEGER NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.commit()

    @staticmethod
    def _insert(
        db: sqlite3.Connection,
        table: str,
        columns: tuple[str, ...],
        data: dict[str, Any],
    ) -> None:
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608
        db.execute(query, tuple(data[column] for column in columns))

    @staticmethod
    def _update(
        db: sqlite3.Connection,
        table: str,
        columns: tuple[str, ...],
        key: str,
        updates: dict[str, Any],
        expected_statuses: Iterable[str] | None,
    ) -> int:
        if len(updates) == 0:
            return 0
        if any(column not in columns for column in updates):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = f"UPDATE {table} SET {set_clause} WHERE {columns[0]} = ?"  # nosec B608
        params.append(key)
        if expected_statuses is not None:
            expected = list(expected_statuses)
            query += f" AND status IN ({', '.join('?' for _ in expected)})"
            params.extend(expected)
        cursor = db.execute(query, params)
        return int(cursor.rowcount)

    def _fetch_one(self, query: str, params: tuple[object, ...]) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        return dict(row) if row is not None else None

    def _fetch_all(self, query: str, params: list[object] | tuple[object, ...]) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def _count_by_status(self, table: str) -> dict[str, int]:
        with self._lock:
            rows = self._db.execute(
                f"SELECT status, COUNT(*) FROM {table} GROUP BY status"  # nosec B608
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        with self._transaction() as db:
            self._insert(db, "tasks", _TASK_COLUMNS, task_data)

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID, including soft-deleted ones."""
        return self._fetch_one("SELECT * FROM tasks WHERE task_id = ?", (task_id,))

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        expected = None if expected_status is None else (expected_status,)
        with self._transaction() as db:
            return self._update(db, "tasks", _TASK_COLUMNS, task_id, updates, expected)

    def list_tasks(
        self,
        status: str | None,
        client_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks that are not soft-deleted, newest first."""
        query = "SELECT * FROM tasks WHERE deleted_at IS NULL"
        params: list[object] = []
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        if client_id is not None:
            query += " AND client_id = ?"
            params.append(client_id)
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)
        return self._fetch_all(query, params)

    def cancel_task(self, task_id: str, cancelled_at: str) -> list[dict[str, Any]]:
        """
        Soft-delete an open task and cancel its non-terminal engagements.

        Returns the engagements that were cancelled. Raises CommittedTaskError
        when the task is no longer open.
        """
        with self._transaction() as db:
            changed = self._update(
                db,
                "tasks",
                _TASK_COLUMNS,
                task_id,
                {"status": "cancelled", "deleted_at": cancelled_at},
                ("open",),
            )
            if changed == 0:
                msg = f"Task {task_id} is not open"
                raise CommittedTaskError(msg)
            rows = db.execute(
                f"SELECT * FROM engagements WHERE task_id = ? "  # nosec B608
                f"AND status IN ({_status_list(ACTIVE_ENGAGEMENT_STATUSES)})",
                (task_id,),
            ).fetchall()
            db.execute(
                f"UPDATE engagements SET status = 'cancelled', cancelled_at = ? "  # nosec B608
                f"WHERE task_id = ? AND status IN ({_status_list(ACTIVE_ENGAGEMENT_STATUSES)})",
                (cancelled_at, task_id),
            )
        return [dict(row) for row in rows]

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        return self._count_by_status("tasks")

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def insert_provider(self, provider_data: dict[str, Any]) -> None:
        """Insert a provider profile; one per user."""
        try:
            with self._transaction() as db:
                self._insert(db, "providers", _PROVIDER_COLUMNS, provider_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateProviderError(
                    f"User {provider_data['user_id']} already has a provider profile"
                ) from exc
            raise

    def get_provider(self, provider_id: str) -> dict[str, Any] | None:
        """Fetch a provider profile by ID."""
        return self._fetch_one("SELECT * FROM providers WHERE provider_id = ?", (provider_id,))

    def get_provider_by_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch the provider profile owned by a user."""
        return self._fetch_one("SELECT * FROM providers WHERE user_id = ?", (user_id,))

    def update_provider(self, provider_id: str, updates: dict[str, Any]) -> int:
        """Update provider columns and return the number of affected rows."""
        with self._transaction() as db:
            return self._update(db, "providers", _PROVIDER_COLUMNS, provider_id, updates, None)

    def list_match_candidates(self, category_id: str) -> list[dict[str, Any]]:
        """Verified, available providers of a category that have coordinates."""
        return self._fetch_all(
            "SELECT * FROM providers WHERE category_id = ? AND verification_status = ? "
            "AND available = 1 AND latitude IS NOT NULL AND longitude IS NOT NULL",
            (category_id, VerificationStatus.VERIFIED.value),
        )

    def list_verified_providers(self, category_id: str) -> list[dict[str, Any]]:
        """Verified, available providers of a category, best rated first."""
        return self._fetch_all(
            "SELECT * FROM providers WHERE category_id = ? AND verification_status = ? "
            "AND available = 1 "
            "ORDER BY rating IS NULL, rating DESC, completed_jobs DESC, provider_id",
            (category_id, VerificationStatus.VERIFIED.value),
        )

    def count_providers_by_status(self) -> dict[str, int]:
        """Count providers grouped by verification status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT verification_status, COUNT(*) FROM providers GROUP BY verification_status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(self, document_data: dict[str, Any]) -> None:
        """Insert a document and mark older documents of the same type superseded."""
        with self._transaction() as db:
            db.execute(
                "UPDATE documents SET superseded_by = ? "
                "WHERE provider_id = ? AND document_type = ? AND superseded_by IS NULL",
                (
                    document_data["document_id"],
                    document_data["provider_id"],
                    document_data["document_type"],
                ),
            )
            self._insert(db, "documents", _DOCUMENT_COLUMNS, document_data)

    def get_document(self, document_id: str) -> dict[str, Any] | None:
        """Fetch a document by ID."""
        return self._fetch_one("SELECT * FROM documents WHERE document_id = ?", (document_id,))

    def update_document(
        self,
        document_id: str,
        updates: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None,
    ) -> int:
        """Update document columns conditionally on the current status."""
        with self._transaction() as db:
            return self._update(
                db, "documents", _DOCUMENT_COLUMNS, document_id, updates, expected_statuses
            )

    def list_documents(self, provider_id: str) -> list[dict[str, Any]]:
        """All documents of a provider, oldest first."""
        return self._fetch_all(
            "SELECT * FROM documents WHERE provider_id = ? ORDER BY uploaded_at, rowid",
            (provider_id,),
        )

    def list_pending_documents(self) -> list[dict[str, Any]]:
        """Current documents awaiting a verifier decision, oldest first."""
        return self._fetch_all(
            "SELECT * FROM documents WHERE status IN (?, ?) AND superseded_by IS NULL "
            "ORDER BY uploaded_at, rowid",
            (DocumentStatus.PENDING.value, DocumentStatus.UNDER_REVIEW.value),
        )

    # ------------------------------------------------------------------
    # Engagements
    # ------------------------------------------------------------------

    def insert_engagement(self, engagement_data: dict[str, Any]) -> None:
        """Insert a new engagement; fails if the pair already has an active one."""
        try:
            with self._transaction() as db:
                self._insert(db, "engagements", _ENGAGEMENT_COLUMNS, engagement_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateEngagementError(
                    "Provider already has an active engagement for this task"
                ) from exc
            raise

    def get_engagement(self, engagement_id: str) -> dict[str, Any] | None:
        """Fetch an engagement by ID."""
        return self._fetch_one(
            "SELECT * FROM engagements WHERE engagement_id = ?", (engagement_id,)
        )

    def find_active_engagement(self, task_id: str, provider_id: str) -> dict[str, Any] | None:
        """Return the non-terminal engagement for a (task, provider) pair, if any."""
        return self._fetch_one(
            f"SELECT * FROM engagements WHERE task_id = ? AND provider_id = ? "  # nosec B608
            f"AND status IN ({_status_list(ACTIVE_ENGAGEMENT_STATUSES)})",
            (task_id, provider_id),
        )

    def list_engagements(
        self,
        *,
        task_id: str | None = None,
        provider_id: str | None = None,
        client_id: str | None = None,
        call_center_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """List engagements with optional AND filters, oldest first."""
        clauses: list[str] = []
        params: list[object] = []
        for column, value in (
            ("task_id", task_id),
            ("provider_id", provider_id),
            ("client_id", client_id),
            ("call_center_id", call_center_id),
            ("status", status),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        query = "SELECT * FROM engagements"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, rowid"
        return self._fetch_all(query, params)

    def count_open_assignments(self, call_center_ids: Iterable[str]) -> dict[str, int]:
        """Count pending/accepted engagements assigned to each call-center agent."""
        ids = list(call_center_ids)
        counts = dict.fromkeys(ids, 0)
        if not ids:
            return counts
        placeholders = ", ".join("?" for _ in ids)
        with self._lock:
            rows = self._db.execute(
                f"SELECT call_center_id, COUNT(*) FROM engagements "  # nosec B608
                f"WHERE call_center_id IN ({placeholders}) AND status IN (?, ?) "
                f"GROUP BY call_center_id",
                [*ids, EngagementStatus.PENDING.value, EngagementStatus.ACCEPTED.value],
            ).fetchall()
        for row in rows:
            counts[str(row[0])] = int(row[1])
        return counts

    def update_engagement(
        self,
        engagement_id: str,
        updates: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None,
    ) -> int:
        """Update engagement columns conditionally on the current status."""
        with self._transaction() as db:
            return self._update(
                db, "engagements", _ENGAGEMENT_COLUMNS, engagement_id, updates, expected_statuses
            )

    def approve_engagement(
        self,
        engagement_id: str,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_statuses: Iterable[str],
    ) -> int:
        """
        Commit a task to one engagement atomically.

        Within one transaction: verify no other engagement on the task is
        approved or later, move the engagement, and move the task to
        in_progress. Raises CommittedTaskError if the task is already taken.
        Returns 0 if the engagement was no longer in an expected status.
        """
        committed = _status_list(COMMITTED_ENGAGEMENT_STATUSES)
        try:
            with self._transaction() as db:
                taken = db.execute(
                    f"SELECT engagement_id FROM engagements WHERE task_id = ? "  # nosec B608
                    f"AND engagement_id != ? AND status IN ({committed})",
                    (task_id, engagement_id),
                ).fetchone()
                if taken is not None:
                    msg = f"Task {task_id} is already committed to {taken['engagement_id']}"
                    raise CommittedTaskError(msg)
                changed = self._update(
                    db,
                    "engagements",
                    _ENGAGEMENT_COLUMNS,
                    engagement_id,
                    updates,
                    expected_statuses,
                )
                if changed == 0:
                    return 0
                task_changed = self._update(
                    db,
                    "tasks",
                    _TASK_COLUMNS,
                    task_id,
                    {"status": "in_progress"},
                    ("open",),
                )
                if task_changed == 0:
                    msg = f"Task {task_id} is not open"
                    raise CommittedTaskError(msg)
                return changed
        except sqlite3.IntegrityError as exc:
            raise CommittedTaskError(f"Task {task_id} is already committed") from exc

    def complete_engagement(
        self,
        engagement_id: str,
        updates: dict[str, Any],
        payment_data: dict[str, Any],
    ) -> int:
        """
        Complete an in-progress engagement and open its payment record.

        Within one transaction: move the engagement to completed, insert the
        pending payment, mark the task completed, and bump the provider's
        completed job count. Returns 0 if the engagement was not in_progress.
        """
        try:
            with self._transaction() as db:
                changed = self._update(
                    db,
                    "engagements",
                    _ENGAGEMENT_COLUMNS,
                    engagement_id,
                    updates,
                    (EngagementStatus.IN_PROGRESS.value,),
                )
                if changed == 0:
                    return 0
                row = db.execute(
                    "SELECT task_id, provider_id FROM engagements WHERE engagement_id = ?",
                    (engagement_id,),
                ).fetchone()
                self._insert(db, "payments", _PAYMENT_COLUMNS, payment_data)
                db.execute(
                    "UPDATE tasks SET status = 'completed', completed_at = ? WHERE task_id = ?",
                    (updates["completed_at"], row["task_id"]),
                )
                db.execute(
                    "UPDATE providers SET completed_jobs = completed_jobs + 1 "
                    "WHERE provider_id = ?",
                    (row["provider_id"],),
                )
                return changed
        except sqlite3.IntegrityError as exc:
            raise DuplicatePaymentError(
                f"Engagement {engagement_id} already has a payment record"
            ) from exc

    def release_task_commitment(
        self,
        engagement_id: str,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_statuses: Iterable[str],
    ) -> int:
        """Cancel a committed engagement and reopen its task in one transaction."""
        with self._transaction() as db:
            changed = self._update(
                db,
                "engagements",
                _ENGAGEMENT_COLUMNS,
                engagement_id,
                updates,
                expected_statuses,
            )
            if changed:
                self._update(
                    db,
                    "tasks",
                    _TASK_COLUMNS,
                    task_id,
                    {"status": "open"},
                    ("in_progress",),
                )
            return changed

    def count_engagements_by_status(self) -> dict[str, int]:
        """Count engagements grouped by status."""
        return self._count_by_status("engagements")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        """Fetch a payment by ID."""
        return self._fetch_one("SELECT * FROM payments WHERE payment_id = ?", (payment_id,))

    def get_payment_by_engagement(self, engagement_id: str) -> dict[str, Any] | None:
        """Fetch the payment record of an engagement, if any."""
        return self._fetch_one(
            "SELECT * FROM payments WHERE engagement_id = ?", (engagement_id,)
        )

    def count_payments_for_engagement(self, engagement_id: str) -> int:
        """Count payment records attached to an engagement."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM payments WHERE engagement_id = ?", (engagement_id,)
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def update_payment(
        self,
        payment_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str,
    ) -> int:
        """Update payment columns conditionally on the current status."""
        with self._transaction() as db:
            return self._update(
                db, "payments", _PAYMENT_COLUMNS, payment_id, updates, (expected_status,)
            )

    def list_payments(
        self,
        *,
        status: str | None = None,
        client_id: str | None = None,
        provider_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List payments with optional AND filters, oldest first."""
        clauses: list[str] = []
        params: list[object] = []
        for column, value in (
            ("status", status),
            ("client_id", client_id),
            ("provider_id", provider_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        query = "SELECT * FROM payments"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, rowid"
        return self._fetch_all(query, params)

    def count_payments_by_status(self) -> dict[str, int]:
        """Count payments grouped by status."""
        return self._count_by_status("payments")

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review_data: dict[str, Any]) -> None:
        """Insert a review and fold its rating into the provider average."""
        try:
            with self._transaction() as db:
                self._insert(db, "reviews", _REVIEW_COLUMNS, review_data)
                db.execute(
                    "UPDATE providers SET "
                    "rating = (SELECT AVG(rating) FROM reviews WHERE provider_id = ?), "
                    "review_count = (SELECT COUNT(*) FROM reviews WHERE provider_id = ?) "
                    "WHERE provider_id = ?",
                    (
                        review_data["provider_id"],
                        review_data["provider_id"],
                        review_data["provider_id"],
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateReviewError("This engagement has already been reviewed") from exc
            raise

    def get_review_by_engagement(self, engagement_id: str) -> dict[str, Any] | None:
        """Fetch the review of an engagement, if any."""
        return self._fetch_one("SELECT * FROM reviews WHERE engagement_id = ?", (engagement_id,))

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
