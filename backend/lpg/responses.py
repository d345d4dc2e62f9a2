# Overview: Response envelope helpers shared by all blueprints.

from __future__ import annotations

from datetime import timedelta

from flask import current_app, jsonify, request

from .errors import ValidationFailed
from lpg.time_utils import parse_iso_datetime


def ok(data=None, *, message: str | None = None, status: int = 200, **extra):
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def page_args() -> tuple[int, int]:
    """Read ?page= and ?limit= (default 20, max 100)."""
    default = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = request.args.get("page", default=1, type=int) or 1
    limit = request.args.get("limit", default=default, type=int) or default
    return max(page, 1), min(max(limit, 1), max_size)


def paginate(query, *, page: int, limit: int, serialize=None) -> dict:
    """
    Apply offset/limit to a query and return the list-envelope fields:
    data, count, total, page, pages.
    """
    total = query.order_by(None).count()
    pages = (total + limit - 1) // limit if total > 0 else 1
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [serialize(r) if serialize else r.to_dict() for r in rows],
        "count": len(rows),
        "total": total,
        "page": page,
        "pages": pages,
    }


def ok_page(result: dict, *, message: str | None = None):
    body = {"success": True}
    if message:
        body["message"] = message
    body.update(result)
    return jsonify(body), 200


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")
    return payload


def datetime_arg(name: str, *, end_of_day: bool = False):
    """
    Read an ISO-8601 query parameter. A bare date used as an upper bound
    covers the whole day.
    """
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        value = parse_iso_datetime(raw)
    except ValueError:
        raise ValidationFailed(f"{name} must be an ISO-8601 date or datetime")
    if end_of_day and len(raw.strip()) == 10:
        value = value + timedelta(days=1) - timedelta(microseconds=1)
    return value


def bool_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    if lowered == "all":
        return None
    raise ValidationFailed(f"{name} must be true, false or all")
