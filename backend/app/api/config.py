from __future__ import annotations

import logging
import os
from dataclasses import replace

from backend.app.insights.cache_policy import DEFAULT_TTL_SECONDS
from backend.app.insights.config import DEFAULT_CONFIG, InsightConfig

logger = logging.getLogger(__name__)


def insight_cache_ttl_seconds() -> float:
    raw = os.getenv("INSIGHT_CACHE_TTL_SECONDS")
    if raw is None or not raw.strip():
        return DEFAULT_TTL_SECONDS
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid INSIGHT_CACHE_TTL_SECONDS=%r", raw)
        return DEFAULT_TTL_SECONDS
    if value != value or value <= 0:
        logger.warning("Ignoring non-positive INSIGHT_CACHE_TTL_SECONDS=%r", raw)
        return DEFAULT_TTL_SECONDS
    return value


def insights_include_deductions() -> bool:
    return os.getenv("INSIGHT_INCLUDE_DEDUCTIONS") == "1"


def insight_config() -> InsightConfig:
    return replace(DEFAULT_CONFIG, include_deductions=insights_include_deductions())
