from __future__ import annotations

import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from supply_portal.config import settings

COMPLEMENT_TAG_TEMPLATE = '[COMPLEMENTO REF {ref}] '
CUSTOM_ITEM_PREFIX = '(NOVO) '

_LEADING_TAG_RE = re.compile(r'^\s*\[\s*COMPLEMENTO\s+REF\s+\w+\s*\]\s*', re.IGNORECASE)
_TAG_REF_RE = re.compile(r'\[\s*COMPLEMENTO\s+REF\s+(\w+)\s*\]', re.IGNORECASE)
_WS_RE = re.compile(r'\s+')


def reference_zone() -> ZoneInfo:
    return ZoneInfo(settings.reference_timezone)


def local_day(moment: datetime) -> date:
    # Naive datetimes come back from SQLite; they are stored in UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(reference_zone()).date()


def format_order_ref(created: date | datetime | None, seq_number: int | None) -> str:
    if created is None:
        return 'N/A'
    day = local_day(created) if isinstance(created, datetime) else created
    return f'{day.day:02d}{day.month:02d}_{(seq_number or 0):04d}'


def order_ref(order) -> str:
    return format_order_ref(order.ref_date or order.created_at, order.seq_number)


def complement_tag(ref: str) -> str:
    return COMPLEMENT_TAG_TEMPLATE.format(ref=ref)


def strip_complement_tag(name: str | None) -> str:
    value = name or ''
    while True:
        stripped = _LEADING_TAG_RE.sub('', value, count=1)
        if stripped == value:
            return value.strip()
        value = stripped


def tag_complement_name(name: str, ref: str) -> str:
    return complement_tag(ref) + strip_complement_tag(name)


def complement_ref_of(name: str | None) -> str | None:
    match = _TAG_REF_RE.search(name or '')
    return match.group(1) if match else None


def normalize_item_name(name: str | None) -> str:
    return _WS_RE.sub(' ', strip_complement_tag(name)).strip().casefold()


def custom_item_name(description: str) -> str:
    clean = _WS_RE.sub(' ', description.strip())
    if clean.upper().startswith(CUSTOM_ITEM_PREFIX.upper()):
        return clean
    return CUSTOM_ITEM_PREFIX + clean


def is_custom_item(material_id: int | None, name: str | None) -> bool:
    return material_id is None or strip_complement_tag(name).upper().startswith(CUSTOM_ITEM_PREFIX.strip().upper())
