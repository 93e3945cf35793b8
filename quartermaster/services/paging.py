"""
Keyset cursors for listings ordered by (field, id).
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Any

from django.db.models import Q
from django.utils.dateparse import parse_datetime

from quartermaster.exceptions import InvalidRequest


def encode_keyset(value: Any, pk: int) -> str:
    """Opaque cursor for the row holding value in the sort field."""
    if isinstance(value, datetime):
        value = value.isoformat()
    raw = json.dumps([value, pk])
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_keyset(cursor: str, is_datetime: bool = False) -> tuple[Any, int]:
    try:
        value, pk = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
        if not isinstance(value, str) or isinstance(pk, bool) or not isinstance(pk, int):
            raise ValueError(cursor)
        if is_datetime:
            value = parse_datetime(value)
            if value is None:
                raise ValueError(cursor)
        return value, pk
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError):
        raise InvalidRequest('INVALID_CURSOR', cursor=cursor) from None


def after_keyset(field: str, value: Any, pk: int, descending: bool) -> Q:
    """Rows strictly past (value, pk) in the listing order."""
    op = 'lt' if descending else 'gt'
    return Q(**{f'{field}__{op}': value}) | Q(**{field: value, f'pk__{op}': pk})
