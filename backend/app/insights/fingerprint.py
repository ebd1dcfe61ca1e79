from __future__ import annotations

import hashlib
import re
from typing import Optional, Union

from .schema import InsightType

UNKNOWN_MERCHANT = "Unknown"


def merchant_label(name: Optional[str]) -> str:
    if not name or not name.strip():
        return UNKNOWN_MERCHANT
    return re.sub(r"\s+", " ", name.strip())


def normalize_merchant(name: Optional[str]) -> str:
    return merchant_label(name).lower()


def fingerprint(insight_type: Union[InsightType, str], grouping_key: str) -> str:
    """
    Stable identity of an insight across runs.

    Derived from the insight type and the detector's grouping key only.
    Supporting transaction ids are not part of the key.
    """
    type_value = insight_type.value if isinstance(insight_type, InsightType) else str(insight_type)
    raw = f"{type_value}|{grouping_key}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
