# Overview: Receipt reference allocation.

from __future__ import annotations

import uuid

from ..time_utils import utcnow


RECEIPT_PREFIX = "RCPT"


def make_receipt_ref(now=None) -> str:
    """
    Human-readable receipt reference: RCPT-YYYYMMDD-XXXXXX.

    The suffix is 6 upper-case hex characters from a random UUID. Uniqueness
    is not guaranteed here; the sales.receipt_ref unique constraint enforces it
    and create_sale retries on collision.
    """
    now = now or utcnow()
    suffix = uuid.uuid4().hex[:6].upper()
    return f"{RECEIPT_PREFIX}-{now:%Y%m%d}-{suffix}"
