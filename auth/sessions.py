"""
auth/sessions.py -- Persistence for issued refresh credentials.

A session row exists for every refresh token in circulation. It is valid for
refresh iff it exists, is not blocked, and its expires_at is in the future.
Expired rows are not swept; they fail the validity check and stay until
deleted explicitly.

Ownership: every operation addressed by session id also filters on user_id,
so a caller who guesses another user's session id matches zero rows.

Rotation: delete_valid_by_token() is a conditional delete. Under concurrent
refreshes with the same token exactly one caller sees rowcount == 1; the
others see 0 and must be rejected.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Engine

from auth.models import Session, SessionMetadata
from auth.store import new_id, now_iso, sessions_table


def expiry_after(seconds: int) -> str:
    """Return the ISO timestamp `seconds` from now, in the store's format."""
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat(timespec="microseconds")


class SessionStore:
    """Repository for Session records.

    Usage:
        sessions = SessionStore(engine)
        s = sessions.create(user_id, refresh_token, SessionMetadata(ip_address="1.2.3.4"), expiry_after(86400))
        sessions.find_valid_by_token(refresh_token)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user_id: str, token: str, meta: SessionMetadata, expires_at: str) -> Session:
        now = now_iso()
        session = Session(
            id=new_id(),
            user_id=user_id,
            token=token,
            ip_address=meta.ip_address or "",
            user_agent=meta.user_agent or "",
            device_id=meta.device_id or "",
            is_blocked=False,
            expires_at=expires_at,
            last_active=now,
            created_at=now,
        )
        with self.engine.connect() as conn:
            conn.execute(
                sessions_table.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token=session.token,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    device_id=session.device_id,
                    is_blocked=0,
                    expires_at=session.expires_at,
                    last_active=session.last_active,
                    created_at=session.created_at,
                )
            )
            conn.commit()
        return session

    def find_valid_by_token(self, token: str) -> Session | None:
        """Return the session for token if it is unblocked and unexpired, else None."""
        t = sessions_table
        with self.engine.connect() as conn:
            row = conn.execute(
                t.select().where((t.c.token == token) & (t.c.is_blocked == 0) & (t.c.expires_at > now_iso()))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_by_user(self, user_id: str) -> list[Session]:
        """All sessions of a user, most recently active first."""
        t = sessions_table
        with self.engine.connect() as conn:
            rows = conn.execute(
                t.select().where(t.c.user_id == user_id).order_by(t.c.last_active.desc(), t.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_by_id(self, user_id: str, session_id: str) -> bool:
        """Delete one of the user's sessions. False when no row matched both ids."""
        t = sessions_table
        with self.engine.connect() as conn:
            result = conn.execute(t.delete().where((t.c.id == session_id) & (t.c.user_id == user_id)))
            conn.commit()
        return result.rowcount > 0

    def block(self, user_id: str, session_id: str) -> bool:
        """Mark one of the user's sessions blocked. False when no row matched both ids."""
        t = sessions_table
        with self.engine.connect() as conn:
            result = conn.execute(
                t.update().where((t.c.id == session_id) & (t.c.user_id == user_id)).values(is_blocked=1)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_by_token(self, token: str) -> bool:
        t = sessions_table
        with self.engine.connect() as conn:
            result = conn.execute(t.delete().where(t.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_valid_by_token(self, token: str) -> bool:
        """Delete the row for token only if it is still valid. True if this call removed it."""
        t = sessions_table
        with self.engine.connect() as conn:
            result = conn.execute(
                t.delete().where((t.c.token == token) & (t.c.is_blocked == 0) & (t.c.expires_at > now_iso()))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(sessions_table.delete().where(sessions_table.c.user_id == user_id))
            conn.commit()
        return result.rowcount


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        device_id=row.device_id,
        is_blocked=bool(row.is_blocked),
        expires_at=row.expires_at,
        last_active=row.last_active,
        created_at=row.created_at,
    )
