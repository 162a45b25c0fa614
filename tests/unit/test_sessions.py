from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

from fastapi import Response

from sheetledger import models
from sheetledger.sessions import COOKIE_NAME, USER_KEY, SessionStore, session_user_id


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_signed_cookie_round_trip_and_tampering(db_session, settings):
    store = SessionStore(db_session, settings)
    record = store.create({USER_KEY: 7})
    signed = store.sign(record.sid)

    assert store.unsign(signed) == record.sid
    assert store.unsign(signed[:-1] + ("0" if signed[-1] != "0" else "1")) is None
    assert store.unsign(record.sid) is None
    assert store.unsign(None) is None
    assert session_user_id(store.load(signed)) == 7


def test_signature_depends_on_the_secret(db_session, settings):
    record = SessionStore(db_session, settings).create()
    other = SessionStore(db_session, replace(settings, session_secret="another-secret-of-sufficient-length!"))
    assert other.load(SessionStore(db_session, settings).sign(record.sid)) is None


def test_expired_sessions_are_pruned_on_access(db_session, settings):
    clock = Clock(datetime(2024, 1, 1))
    store = SessionStore(db_session, settings, clock=clock)
    record = store.create({USER_KEY: 1})
    cookie = store.sign(record.sid)

    clock.now += timedelta(days=29)
    assert store.load(cookie) is not None

    clock.now += timedelta(days=31)
    assert store.load(cookie) is None
    assert db_session.get(models.SessionRecord, record.sid) is None


def test_touch_slides_the_expiry(db_session, settings):
    clock = Clock(datetime(2024, 1, 1))
    store = SessionStore(db_session, settings, clock=clock)
    record = store.create({USER_KEY: 1})

    clock.now += timedelta(days=20)
    store.touch(record)

    assert record.expires_at == datetime(2024, 1, 21) + timedelta(days=30)
    clock.now += timedelta(days=25)
    assert store.load(store.sign(record.sid)) is not None


def test_regenerate_replaces_the_session_id(db_session, settings):
    store = SessionStore(db_session, settings)
    pending = store.create({"oauth_state": "abc"})
    old_sid = pending.sid

    fresh = store.regenerate(pending, {USER_KEY: 3})

    assert fresh.sid != old_sid
    assert fresh.data == {USER_KEY: 3}
    assert db_session.get(models.SessionRecord, old_sid) is None


def test_update_merges_data(db_session, settings):
    store = SessionStore(db_session, settings)
    record = store.create({USER_KEY: 3})
    store.update(record, oauth_state="xyz")
    reloaded = store.load(store.sign(record.sid))
    assert reloaded.data == {USER_KEY: 3, "oauth_state": "xyz"}


def test_destroy_and_cookie_helpers(db_session, settings):
    store = SessionStore(db_session, settings)
    record = store.create({USER_KEY: 3})
    response = Response()
    store.set_cookie(response, record)
    header = response.headers["set-cookie"]
    assert header.startswith(f"{COOKIE_NAME}=")
    assert "HttpOnly" in header
    assert "samesite=lax" in header.lower()
    assert "Max-Age=2592000" in header
    assert "Secure" not in header

    store.destroy(record)
    assert db_session.get(models.SessionRecord, record.sid) is None
    store.destroy(None)


def test_production_cookies_are_secure(db_session, settings):
    store = SessionStore(db_session, replace(settings, environment="production"))
    response = Response()
    store.set_cookie(response, store.create())
    assert "Secure" in response.headers["set-cookie"]
