# Overview: Read side for warranties created by the sale engine.

from __future__ import annotations

from sqlalchemy import func

from ..errors import NotFoundError
from ..extensions import db
from ..models import Warranty
from ..time_utils import utcnow


def list_warranties(*, active_only: bool = False, expired_only: bool = False, item_id: int | None = None) -> list[Warranty]:
    query = db.session.query(Warranty)
    now = utcnow()
    if active_only:
        query = query.filter(Warranty.expires_at >= now)
    if expired_only:
        query = query.filter(Warranty.expires_at < now)
    if item_id is not None:
        query = query.filter_by(item_id=item_id)
    return query.order_by(Warranty.expires_at).all()


def find_warranty_by_serial(item_id: int, serial_number: str) -> Warranty:
    serial = (serial_number or "").strip()
    warranty = (
        db.session.query(Warranty)
        .filter(Warranty.item_id == item_id, func.lower(Warranty.serial_number) == serial.lower())
        .first()
    )
    if not warranty:
        raise NotFoundError(f"No warranty for serial '{serial}'", details={"item_id": item_id})
    return warranty
