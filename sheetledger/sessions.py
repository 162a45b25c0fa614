"""Server-side sessions stored in the ``sessions`` table.

The cookie only carries ``<sid>.<signature>``; everything else (the signed-in
user, the pending OAuth state) lives in the row. Expiry slides forward on
every authenticated request.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import Any, Optional

from fastapi import Response
from sqlalchemy import delete
from sqlalchemy.orm import Session

from . import models
from .config import Settings

LOG = logging.getLogger(__name__)

COOKIE_NAME = "sheetledger.sid"
USER_KEY = "user_id"
OAUTH_STATE_KEY = "oauth_state"
CODE_VERIFIER_KEY = "code_verifier"


class SessionStore:
    """Create, load, slide and destroy session rows for one request."""

    def __init__(self, db: Session, settings: Settings, *, clock=models.utcnow) -> None:
        self.db = db
        self.settings = settings
        self._clock = clock

    # --- cookie signing -----------------------------------------------------

    def _signature(self, sid: str) -> str:
        return hmac.new(self.settings.session_secret.encode("utf-8"), sid.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(self, sid: str) -> str:
        return f"{sid}.{self._signature(sid)}"

    def unsign(self, value: Optional[str]) -> Optional[str]:
        """Return the session id carried by ``value`` or ``None`` when tampered."""
        if not value or "." not in value:
            return None
        sid, _, signature = value.rpartition(".")
        if not sid or not hmac.compare_digest(signature, self._signature(sid)):
            return None
        return sid

    # --- rows ---------------------------------------------------------------

    def _expiry(self) -> datetime:
        return self._clock() + self.settings.session_max_age

    def prune_expired(self) -> int:
        result = self.db.execute(delete(models.SessionRecord).where(models.SessionRecord.expires_at <= self._clock()))
        self.db.commit()
        return result.rowcount or 0

    def load(self, cookie_value: Optional[str]) -> Optional[models.SessionRecord]:
        sid = self.unsign(cookie_value)
        if sid is None:
            return None
        record = self.db.get(models.SessionRecord, sid)
        if record is None:
            return None
        if record.expires_at <= self._clock():
            LOG.debug("Session %s expired", sid[:8])
            self.prune_expired()
            return None
        return record

    def create(self, data: Optional[dict[str, Any]] = None) -> models.SessionRecord:
        record = models.SessionRecord(sid=secrets.token_urlsafe(32), data=dict(data or {}), expires_at=self._expiry())
        self.db.add(record)
        self.db.commit()
        return record

    def update(self, record: models.SessionRecord, **values: Any) -> models.SessionRecord:
        # Reassign so the JSON column is flagged dirty.
        record.data = {**(record.data or {}), **values}
        record.expires_at = self._expiry()
        self.db.commit()
        return record

    def touch(self, record: models.SessionRecord) -> models.SessionRecord:
        record.expires_at = self._expiry()
        self.db.commit()
        return record

    def regenerate(self, record: Optional[models.SessionRecord], data: dict[str, Any]) -> models.SessionRecord:
        """Replace ``record`` with a fresh session id carrying only ``data``."""
        if record is not None:
            self.db.delete(record)
        return self.create(data)

    def destroy(self, record: Optional[models.SessionRecord]) -> None:
        if record is None:
            return
        self.db.delete(record)
        self.db.commit()

    # --- response helpers ---------------------------------------------------

    def set_cookie(self, response: Response, record: models.SessionRecord) -> None:
        response.set_cookie(
            COOKIE_NAME,
            self.sign(record.sid),
            max_age=int(self.settings.session_max_age.total_seconds()),
            httponly=True,
            samesite="lax",
            secure=self.settings.is_production,
            path="/",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            COOKIE_NAME,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.settings.is_production,
        )


def session_user_id(record: Optional[models.SessionRecord]) -> Optional[int]:
    if record is None or not record.data:
        return None
    value = record.data.get(USER_KEY)
    return value if isinstance(value, int) else None


__all__ = [
    "CODE_VERIFIER_KEY",
    "COOKIE_NAME",
    "OAUTH_STATE_KEY",
    "SessionStore",
    "USER_KEY",
    "session_user_id",
]
