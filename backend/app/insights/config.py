"""
Detector thresholds and weights.

Everything the detectors compare against lives here, in frozen dataclasses that
are passed into the pipeline. Nothing reads module-level constants at run time,
so tests can build a variant with `dataclasses.replace` without touching any
process-wide state.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class QuietLeakThresholds:
    min_occurrences: int = 3
    max_individual_amount: float = 20.0
    min_cumulative_total: float = 50.0
    severity_divisor: float = 25.0


@dataclass(frozen=True)
class TaxDragThresholds:
    min_tax_rate: float = 0.09
    min_total_spent: float = 100.0
    baseline_rate: float = 0.08
    severity_multiplier: float = 100.0


@dataclass(frozen=True)
class SpikeThresholds:
    average_multiplier: float = 2.0
    severity_multiplier: float = 2.0
    month_over_month_pct: float = 50.0
    month_over_month_divisor: float = 10.0


@dataclass(frozen=True)
class DuplicateThresholds:
    window_hours: float = 24.0
    severity: int = 5


@dataclass(frozen=True)
class InsightConfig:
    quiet_leak: QuietLeakThresholds = field(default_factory=QuietLeakThresholds)
    tax_drag: TaxDragThresholds = field(default_factory=TaxDragThresholds)
    spike: SpikeThresholds = field(default_factory=SpikeThresholds)
    duplicate: DuplicateThresholds = field(default_factory=DuplicateThresholds)
    max_severity: int = 10
    include_deductions: bool = False


DEFAULT_CONFIG = InsightConfig()
