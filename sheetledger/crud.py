"""Repository helpers for the local identifier cache."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas


class EntityConflictError(RuntimeError):
    """Raised when a unique constraint is violated."""


def find_user_by_google_id(session: Session, google_id: str) -> Optional[models.User]:
    stmt = select(models.User).where(models.User.google_id == google_id)
    return session.scalars(stmt).first()


def upsert_user_from_login(
    session: Session,
    info: schemas.GoogleUserInfo,
    access_token: str,
    refresh_token: Optional[str],
) -> models.User:
    """Create the user on first login, otherwise refresh the stored tokens.

    Google only issues a refresh token on some consents, so an existing one is
    kept when ``refresh_token`` is empty.
    """
    user = find_user_by_google_id(session, info.id)
    if user is None:
        user = models.User(
            google_id=info.id,
            email=info.email,
            access_token=access_token,
            refresh_token=refresh_token,
        )
        session.add(user)
    else:
        user.email = info.email
        user.access_token = access_token
        user.refresh_token = refresh_token or user.refresh_token
    session.flush()
    session.refresh(user)
    return user


def update_user_tokens(
    session: Session,
    user: models.User,
    access_token: str,
    refresh_token: Optional[str],
) -> models.User:
    user.access_token = access_token
    user.refresh_token = refresh_token or user.refresh_token
    session.commit()
    return user


def find_spreadsheet(session: Session, user_id: int, year: int) -> Optional[models.UserSpreadsheet]:
    stmt = select(models.UserSpreadsheet).where(
        models.UserSpreadsheet.user_id == user_id,
        models.UserSpreadsheet.year == year,
    )
    return session.scalars(stmt).first()


def create_spreadsheet_record(
    session: Session, user_id: int, year: int, spreadsheet_id: str
) -> models.UserSpreadsheet:
    record = models.UserSpreadsheet(user_id=user_id, year=year, spreadsheet_id=spreadsheet_id)
    session.add(record)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise EntityConflictError(f"Spreadsheet for user {user_id} and year {year} already exists") from exc
    session.refresh(record)
    return record


def delete_spreadsheet_record(session: Session, record: models.UserSpreadsheet) -> None:
    """Remove a spreadsheet row together with its cached month tabs."""
    session.delete(record)
    session.commit()


def find_sheet(session: Session, spreadsheet: models.UserSpreadsheet, month: str) -> Optional[models.UserSheet]:
    stmt = select(models.UserSheet).where(
        models.UserSheet.spreadsheet_id == spreadsheet.id,
        models.UserSheet.month == month,
    )
    return session.scalars(stmt).first()


def create_sheet_record(
    session: Session, spreadsheet: models.UserSpreadsheet, month: str, sheet_id: int
) -> models.UserSheet:
    record = models.UserSheet(spreadsheet_id=spreadsheet.id, month=month, sheet_id=sheet_id)
    session.add(record)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise EntityConflictError(f"Sheet {month} already cached for spreadsheet {spreadsheet.id}") from exc
    session.refresh(record)
    return record


def delete_sheet_record(session: Session, record: models.UserSheet) -> None:
    session.delete(record)
    session.commit()
