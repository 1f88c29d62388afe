"""Row coercion shared by the repositories.

MySQL returns ``Decimal``/``datetime`` objects while the SQLite fallback
returns floats and ISO strings, so every repository funnels its rows through
these helpers before handing them to a service.
"""
from __future__ import annotations

import json
import uuid
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

from medshop.services.cache import dumps


CENT = Decimal("0.01")


def new_id() -> str:
    return str(uuid.uuid4())


def coerce_int(value: Any, *, default: int | None = None) -> int:
    if value is None:
        if default is None:
            raise ValueError("Integer value is required")
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        return int(value)
    return int(float(value))


def coerce_optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return coerce_int(value)


def coerce_decimal(value: Any, *, default: Decimal | None = Decimal("0")) -> Decimal | None:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return default


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def coerce_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def load_json(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return dumps(value)


def normalise(
    row: dict[str, Any] | None,
    *,
    ints: Iterable[str] = (),
    money_fields: Iterable[str] = (),
    bools: Iterable[str] = (),
    datetimes: Iterable[str] = (),
    json_fields: Iterable[str] = (),
) -> dict[str, Any] | None:
    if row is None:
        return None
    result = dict(row)
    for key in ints:
        if key in result:
            result[key] = coerce_optional_int(result[key])
    for key in money_fields:
        if key in result:
            result[key] = coerce_decimal(result[key], default=None)
    for key in bools:
        if key in result:
            result[key] = coerce_bool(result[key])
    for key in datetimes:
        if key in result:
            result[key] = coerce_datetime(result[key])
    for key in json_fields:
        if key in result:
            result[key] = load_json(result[key])
    return result


def like(term: str) -> str:
    return f"%{term.strip()}%"
