"""Parsing helpers shared by the billing endpoints.

The quote editor posts loosely typed JSON: ids may be strings, quantities may be
blank, and the grid always carries a trailing empty row. These helpers turn that
payload into plain values before any database work starts.
"""
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional

from ..models import QuoteStatus

CENT = Decimal('0.01')

# Column ceilings: INTEGER ids, Numeric(10, 2) quantity/rate, Numeric(12, 2) line totals
MAX_ID = 2 ** 31 - 1
AMOUNT_LIMIT = Decimal(10) ** 8
TOTAL_LIMIT = Decimal(10) ** 10


class ValidationError(ValueError):
    """Raised for payloads the API rejects with a 400."""


@dataclass
class LineDraft:
    item_id: Optional[int]
    description: str
    quantity: Decimal
    rate: Decimal
    line_total: Decimal


@dataclass
class QuoteDraft:
    quote_id: int
    client_id: int
    status: QuoteStatus
    title: str = ''
    notes: str = ''
    lines: List[LineDraft] = field(default_factory=list)


def to_int(value, default=0):
    """Lenient integer cast: '12' -> 12, '' / None / 'abc' -> default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            number = float(value)
        except (TypeError, ValueError):
            return default
        return int(number) if math.isfinite(number) else default


def to_id(value):
    """Positive id that fits an INTEGER column, else 0."""
    number = to_int(value)
    return number if 0 < number <= MAX_ID else 0


def to_decimal(value, default=Decimal('0')):
    if value is None or value == '' or isinstance(value, bool):
        return default
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Invalid number: {value!r}')
    if not number.is_finite():
        raise ValidationError(f'Invalid number: {value!r}')
    return number


def to_money(value, limit=AMOUNT_LIMIT):
    number = to_decimal(value)
    if abs(number) < limit:
        number = number.quantize(CENT, rounding=ROUND_HALF_UP)
    if abs(number) >= limit:
        raise ValidationError(f'Number out of range: {value!r}')
    return number


def clean_text(value):
    if value is None:
        return ''
    return str(value).strip()


def parse_line(entry):
    """Turn one posted line into a LineDraft, or None for an empty grid row."""
    if not isinstance(entry, dict):
        raise ValidationError('Each line item must be an object')

    item_id = to_int(entry.get('item_id')) or None
    if item_id and abs(item_id) > MAX_ID:
        raise ValidationError('Invalid item_id')
    description = clean_text(entry.get('description'))
    if not description and not item_id:
        return None

    quantity = to_money(entry.get('quantity'))
    rate = to_money(entry.get('rate'))
    if entry.get('line_total') in (None, ''):
        line_total = (quantity * rate).quantize(CENT, rounding=ROUND_HALF_UP)
        if abs(line_total) >= TOTAL_LIMIT:
            raise ValidationError('Line total out of range')
    else:
        line_total = to_money(entry.get('line_total'), TOTAL_LIMIT)

    return LineDraft(
        item_id=item_id,
        description=description,
        quantity=quantity,
        rate=rate,
        line_total=line_total,
    )


def parse_lines(entries):
    if not isinstance(entries, list):
        return []
    lines = []
    for entry in entries:
        line = parse_line(entry)
        if line is not None:
            lines.append(line)
    return lines


def parse_quote_payload(data):
    """Validate a create/update body. Raises ValidationError on rejection."""
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON')

    client_id = to_int(data.get('client_id'))
    if client_id <= 0:
        raise ValidationError('Missing client_id')
    if client_id > MAX_ID:
        raise ValidationError('Invalid client_id')

    quote_id = max(to_int(data.get('id')), 0)
    if quote_id > MAX_ID:
        raise ValidationError('Invalid quote id')

    lines = parse_lines(data.get('items'))
    if not lines:
        raise ValidationError('At least one line item is required')

    return QuoteDraft(
        quote_id=quote_id,
        client_id=client_id,
        status=QuoteStatus.coerce(data.get('status', QuoteStatus.DRAFT.value)),
        title=clean_text(data.get('title')),
        notes=clean_text(data.get('notes')),
        lines=lines,
    )


def parse_status_filter(raw):
    """'draft,issued' -> [QuoteStatus.DRAFT, QuoteStatus.ISSUED]; unknown tokens are ignored."""
    if not raw:
        return []
    statuses = []
    for token in raw.split(','):
        token = token.strip().lower()
        if token in QuoteStatus._value2member_map_ and QuoteStatus(token) not in statuses:
            statuses.append(QuoteStatus(token))
    return statuses


def page_count(total, page_size):
    return max(1, math.ceil(total / page_size))


def like_pattern(query):
    """Lower-cased substring pattern with LIKE wildcards escaped."""
    escaped = query.lower().replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f'%{escaped}%'
