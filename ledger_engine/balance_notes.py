"""Recovery of balance deltas recorded in transaction notes.

Older balance-update entries stored the signed change in the free-text
notes ("Balance change: +120.50") instead of a dedicated column. This module
is the only place that reads that format.
"""
from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger(__name__)

BALANCE_CHANGE_PATTERNS = (
    re.compile(r"变化金额：\s*([+-]?\d+(?:\.\d*)?)"),
    re.compile(r"Balance change:\s*([+-]?\d+(?:\.\d*)?)", re.IGNORECASE),
)


def extract_balance_change(notes: Optional[str]) -> Optional[Decimal]:
    """Return the signed delta encoded in ``notes``, or None if absent."""
    if not notes:
        return None

    for pattern in BALANCE_CHANGE_PATTERNS:
        match = pattern.search(notes)
        if not match:
            continue
        try:
            return Decimal(match.group(1))
        except InvalidOperation:
            logger.debug("Unparseable balance change in notes: %r", notes)
            return None
    return None
