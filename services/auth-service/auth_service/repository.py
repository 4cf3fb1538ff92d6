"""Database repository for accounts, tenants, reset tokens and the auth audit log."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, Role, Tenant
from .domain.contracts import CreateAccountInput
from .domain.lockout import LockoutState
from .errors import DuplicateEmail, NotFound

_ACCOUNT_COLUMNS = (
    "account_id, email, role, created_at, name, tenant_id, failed_attempts, "
    "locked_until, secret_changed_at, sessions_revoked_at, disabled"
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountRepository:
    """Postgres-backed credential persistence.

    Lockout counters are only changed through :meth:`update_lockout`, which
    holds a row lock for the read-transition-write cycle.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def _select(self, include_secret: bool) -> str:
        columns = _ACCOUNT_COLUMNS + (", secret_hash" if include_secret else "")
        return f"SELECT {columns} FROM accounts"

    def find_by_email(self, email: str, *, include_secret: bool = False) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(self._select(include_secret) + " WHERE email = %s", (normalize_email(email),))
                row = cur.fetchone()
        return self._map_record(row) if row else None

    def get_account(self, account_id: str, *, include_secret: bool = False) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(self._select(include_secret) + " WHERE account_id = %s", (account_id,))
                row = cur.fetchone()
        return self._map_record(row) if row else None

    def create_account(self, payload: CreateAccountInput) -> Account:
        """Insert an account; raises :class:`DuplicateEmail` when the email is taken."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, email, name, secret_hash, role, tenant_id,
                            failed_attempts, locked_until, secret_changed_at, disabled,
                            created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, 0, NULL, NULL, FALSE, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account_id,
                            normalize_email(payload.email),
                            payload.name,
                            payload.secret_hash,
                            payload.role.value,
                            payload.tenant_id,
                            now,
                            now,
                        ),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateEmail() from exc
        return self._map_record(row)

    def update_secret(self, account_id: str, secret_hash: str, changed_at: datetime) -> Account:
        """Store a new hash and clear lockout counters in one statement."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET secret_hash = %s, secret_changed_at = %s,
                        failed_attempts = 0, locked_until = NULL, updated_at = %s
                    WHERE account_id = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (secret_hash, changed_at, changed_at, account_id),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            raise NotFound("User not found")
        return self._map_record(row)

    def update_details(self, account_id: str, *, name: str | None, email: str | None) -> Account | None:
        """Update name and/or email; raises :class:`DuplicateEmail` when the email is taken."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE accounts
                        SET name = COALESCE(%s, name), email = COALESCE(%s, email), updated_at = NOW()
                        WHERE account_id = %s
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (name, normalize_email(email) if email is not None else None, account_id),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateEmail() from exc
        return self._map_record(row) if row else None

    def revoke_sessions(self, account_id: str, revoked_at: datetime) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE accounts SET sessions_revoked_at = %s, updated_at = %s WHERE account_id = %s",
                    (revoked_at, revoked_at, account_id),
                )
                conn.commit()

    def replace_secret_hash(self, account_id: str, secret_hash: str) -> None:
        """Swap in an upgraded hash of the same secret without touching session state."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE accounts SET secret_hash = %s WHERE account_id = %s",
                    (secret_hash, account_id),
                )
                conn.commit()

    def update_lockout(
        self,
        account_id: str,
        transition: Callable[[LockoutState], LockoutState],
    ) -> tuple[LockoutState, LockoutState] | None:
        """Apply ``transition`` to the stored lockout state under a row lock.

        Returns ``(before, after)`` or ``None`` if the account does not exist.
        """
        with self._pool.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        """
                        SELECT failed_attempts, locked_until
                        FROM accounts
                        WHERE account_id = %s
                        FOR UPDATE
                        """,
                        (account_id,),
                    )
                    row = cur.fetchone()
                    if not row:
                        return None
                    before = LockoutState(failed_attempts=row[0], locked_until=row[1])
                    after = transition(before)
                    if after != before:
                        cur.execute(
                            """
                            UPDATE accounts
                            SET failed_attempts = %s, locked_until = %s, updated_at = NOW()
                            WHERE account_id = %s
                            """,
                            (after.failed_attempts, after.locked_until, account_id),
                        )
        return before, after

    def update_role(self, account_id: str, role: Role) -> Account | None:
        return self._update_returning("role = %s", role.value, account_id)

    def update_tenant(self, account_id: str, tenant_id: str | None) -> Account | None:
        return self._update_returning("tenant_id = %s", tenant_id, account_id)

    def _update_returning(self, assignment: str, value: Any, account_id: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET {assignment}, updated_at = NOW()
                    WHERE account_id = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (value, account_id),
                )
                row = cur.fetchone()
                conn.commit()
        return self._map_record(row) if row else None

    def create_tenant(self, name: str) -> Tenant:
        tenant_id = str(uuid.uuid4())
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO tenants (tenant_id, name, created_at)
                    VALUES (%s, %s, NOW())
                    RETURNING tenant_id, name, created_at
                    """,
                    (tenant_id, name.strip()),
                )
                row = cur.fetchone()
                conn.commit()
        return Tenant(tenant_id=str(row[0]), name=row[1], created_at=row[2])

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT tenant_id, name, created_at FROM tenants WHERE tenant_id = %s",
                    (tenant_id,),
                )
                row = cur.fetchone()
        return Tenant(tenant_id=str(row[0]), name=row[1], created_at=row[2]) if row else None

    def delete_tenant(self, tenant_id: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM tenants WHERE tenant_id = %s", (tenant_id,))
                conn.commit()

    def create_reset_token(self, *, account_id: str, token_hash: str, expires_at: datetime) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO password_reset_tokens (token_id, account_id, token_hash, expires_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (str(uuid.uuid4()), account_id, token_hash, expires_at),
                )
                conn.commit()

    def consume_reset_token(self, token_hash: str, now: datetime) -> str | None:
        """Mark an unexpired, unused reset token as used and return its account id."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE password_reset_tokens
                    SET used_at = %s
                    WHERE token_hash = %s AND used_at IS NULL AND expires_at > %s
                    RETURNING account_id
                    """,
                    (now, token_hash, now),
                )
                row = cur.fetchone()
                conn.commit()
        return str(row[0]) if row else None

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing authentication activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO auth_audit_log (account_id, tenant_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (account_id, tenant_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            role=Role(row[2]),
            created_at=row[3],
            name=row[4],
            tenant_id=str(row[5]) if row[5] is not None else None,
            failed_attempts=row[6],
            locked_until=row[7],
            secret_changed_at=row[8],
            sessions_revoked_at=row[9],
            disabled=row[10],
            secret_hash=row[11] if len(row) > 11 else None,
        )
