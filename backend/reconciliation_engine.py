# backend/reconciliation_engine.py

"""
Reconciliation Engine

Compares allocated sub-quantities (vessel assignments, juice lots, package
rows) against the known total of an operation and classifies the
discrepancy.

This engine is responsible for:
- Derived totals (assigned, loss, net, remaining)
- Ratios (yield, margin, markup, loss percent) with division-by-zero guards
- Classification of the remainder against the completion tolerance

This engine MUST NOT:
- Persist anything
- Call the data source
- Clamp negative remainders (over-allocation is a meaningful state)

INVARIANTS:
1) remaining = total_available - assigned_total, with no rounding other than
   near-zero snapping below the epsilon
2) The near-zero epsilon (display noise) and the completion tolerance
   (business rule) are separate thresholds
3) The completion tolerance is inclusive: |remaining| == tolerance is balanced
4) Results are recomputed on every call; nothing is cached
5) Every line item is measured in the dimension of the total it is
   reconciled against
6) A remainder that is not a finite number is invalid, never balanced
"""

import math
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, model_validator

from app_config import COMPLETION_TOLERANCE_L, NEAR_ZERO_EPSILON, ReconciliationSettings
from volume_conversion_engine import Dimension, Quantity

# Shown instead of NaN/Infinity when a ratio has no meaningful denominator
PLACEHOLDER = "—"

Ratio = Union[float, str]

# ==================== ENUMS ====================

class ReconciliationStatus(str, Enum):
    BALANCED = "balanced"
    UNDER = "under"
    OVER = "over"
    INVALID = "invalid"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class PackagingLossLevel(str, Enum):
    INVALID = "invalid"
    EXCESSIVE = "excessive"
    HIGH = "high"
    MODERATE = "moderate"
    NORMAL = "normal"


# ==================== DATA MODELS ====================

class LineItem(BaseModel):
    """One allocation row: a vessel assignment, juice lot or package row"""
    target_id: str
    quantity: Quantity
    loss: Optional[Quantity] = None

    @property
    def loss_value(self) -> float:
        return self.loss.canonical_value if self.loss is not None else 0.0


class Operation(BaseModel):
    """A total quantity plus the line items allocated against it"""
    total_available: Optional[Quantity] = None
    line_items: List[LineItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dimensions(self):
        if self.total_available is not None:
            expected = self.total_available.dimension
        elif self.line_items:
            expected = self.line_items[0].quantity.dimension
        else:
            return self

        for item in self.line_items:
            for quantity in (item.quantity, item.loss):
                if quantity is not None and quantity.dimension != expected:
                    raise ValueError(
                        f"Line item '{item.target_id}' is measured in {quantity.dimension.value.lower()} "
                        f"but the operation is measured in {expected.value.lower()}"
                    )
        return self

    @property
    def dimension(self) -> Dimension:
        if self.total_available is not None:
            return self.total_available.dimension
        if self.line_items:
            return self.line_items[0].quantity.dimension
        return Dimension.VOLUME


class ReconciliationIssue(BaseModel):
    severity: IssueSeverity
    message: str


class ReconciliationResult(BaseModel):
    """Derived view of an operation. Never stored."""
    assigned_total: float
    loss_total: float
    net_total: float
    remaining: float
    status: ReconciliationStatus
    issue: Optional[ReconciliationIssue] = None

    @property
    def can_submit(self) -> bool:
        return self.status == ReconciliationStatus.BALANCED


# ==================== TOTALS ====================

def snap_near_zero(value: float, epsilon: float = NEAR_ZERO_EPSILON) -> float:
    """Treat |value| < epsilon as exactly 0 so floating-point noise never shows as "-0.003 remaining"."""
    if abs(value) < epsilon:
        return 0.0
    return value


def assigned_total(line_items: List[LineItem]) -> float:
    return sum(item.quantity.canonical_value for item in line_items)


def loss_total(line_items: List[LineItem]) -> float:
    return sum(item.loss_value for item in line_items)


def remaining_quantity(total_available: Optional[float], assigned: float) -> float:
    """Unclamped: a negative result means over-allocation."""
    return (total_available or 0.0) - assigned


# ==================== CLASSIFICATION ====================

def classify(
    remaining: float,
    tolerance: float = COMPLETION_TOLERANCE_L,
    epsilon: float = NEAR_ZERO_EPSILON,
) -> ReconciliationStatus:
    """
    Classify a remainder.

    |remaining| < epsilon is snapped to 0. Beyond that, anything within the
    inclusive tolerance band is balanced; a negative remainder past the band
    is over-allocated and a positive one is under-allocated. NaN and
    infinite remainders are invalid.

    The band is compared after rounding to 9 decimals, so a remainder such
    as 100.3 - 99.8 (0.5000000000000142) still lands on the boundary.
    """
    if remaining is None or not math.isfinite(remaining):
        return ReconciliationStatus.INVALID
    snapped = round(snap_near_zero(remaining, epsilon), 9)
    if snapped < -tolerance:
        return ReconciliationStatus.OVER
    if snapped > tolerance:
        return ReconciliationStatus.UNDER
    return ReconciliationStatus.BALANCED


def describe_issue(status: ReconciliationStatus, remaining: float, unit: str = "L") -> Optional[ReconciliationIssue]:
    """Banner text for a non-balanced status."""
    if status == ReconciliationStatus.INVALID:
        return ReconciliationIssue(
            severity=IssueSeverity.ERROR,
            message="Quantities do not add up to a finite amount. Check the entered values.",
        )
    if status == ReconciliationStatus.OVER:
        return ReconciliationIssue(
            severity=IssueSeverity.ERROR,
            message=f"Over-allocated by {abs(remaining):.2f} {unit}. Reduce the assigned quantities.",
        )
    if status == ReconciliationStatus.UNDER:
        return ReconciliationIssue(
            severity=IssueSeverity.WARNING,
            message=f"{remaining:.2f} {unit} remaining to allocate.",
        )
    return None


def reconcile(operation: Operation, settings: Optional[ReconciliationSettings] = None) -> ReconciliationResult:
    """Recompute every derived total for an operation and classify it."""
    settings = settings or ReconciliationSettings()

    assigned = assigned_total(operation.line_items)
    losses = loss_total(operation.line_items)
    total = operation.total_available.canonical_value if operation.total_available is not None else 0.0
    remaining = snap_near_zero(remaining_quantity(total, assigned), settings.near_zero_epsilon)

    status = classify(remaining, settings.completion_tolerance_l, settings.near_zero_epsilon)
    unit = "kg" if operation.dimension == Dimension.WEIGHT else "L"

    return ReconciliationResult(
        assigned_total=assigned,
        loss_total=losses,
        net_total=assigned - losses,
        remaining=remaining,
        status=status,
        issue=describe_issue(status, remaining, unit),
    )


# ==================== RATIOS ====================

def _safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> Ratio:
    if numerator is None or denominator is None:
        return PLACEHOLDER
    if denominator == 0 or not math.isfinite(denominator) or not math.isfinite(numerator):
        return PLACEHOLDER
    return numerator / denominator * 100


def yield_percent(juice_volume_l: Optional[float], input_weight_kg: Optional[float]) -> Ratio:
    """Extraction rate of a press run: liters of juice per kilogram of fruit, as a percent."""
    return _safe_ratio(juice_volume_l, input_weight_kg)


def margin_percent(retail: Optional[float], wholesale: Optional[float]) -> Ratio:
    """(retail - wholesale) / retail * 100"""
    if retail is None or wholesale is None:
        return PLACEHOLDER
    return _safe_ratio(retail - wholesale, retail)


def markup_percent(retail: Optional[float], wholesale: Optional[float]) -> Ratio:
    """(retail - wholesale) / wholesale * 100"""
    if retail is None or wholesale is None:
        return PLACEHOLDER
    return _safe_ratio(retail - wholesale, wholesale)


def allocation_percent(operation: Operation) -> Ratio:
    """Share of the available total that has been assigned."""
    total = operation.total_available.canonical_value if operation.total_available is not None else None
    return _safe_ratio(assigned_total(operation.line_items), total)


def format_ratio(ratio: Ratio, decimals: int = 1) -> str:
    if isinstance(ratio, str):
        return ratio
    return f"{ratio:.{decimals}f}%"


# ==================== PACKAGING LOSS ====================

# Below this the loss is treated as negative (more liquid out than in)
NEGATIVE_LOSS_EPSILON_L = 0.001


class PackagingLoss(BaseModel):
    expected_volume_l: float
    loss_l: float
    loss_percent: float
    level: PackagingLossLevel

    @property
    def blocks_submission(self) -> bool:
        return self.level == PackagingLossLevel.INVALID


def classify_loss_percent(loss_l: float, loss_pct: float) -> PackagingLossLevel:
    if loss_l < -NEGATIVE_LOSS_EPSILON_L:
        return PackagingLossLevel.INVALID
    if loss_pct > 10:
        return PackagingLossLevel.EXCESSIVE
    if loss_pct > 5:
        return PackagingLossLevel.HIGH
    if loss_pct > 2:
        return PackagingLossLevel.MODERATE
    return PackagingLossLevel.NORMAL


def packaging_loss(volume_taken_l: Optional[float], units_produced: Optional[int], package_size_ml: Optional[float]) -> PackagingLoss:
    """
    Loss of a bottling/kegging run.

    expected = units * package size; loss = volume taken - expected. Missing
    or NaN inputs count as 0 and a zero volume taken reports 0 percent.
    """
    def _clean(value):
        if value is None or (isinstance(value, float) and math.isnan(value)):
            return 0.0
        return float(value)

    taken = _clean(volume_taken_l)
    expected = _clean(units_produced) * _clean(package_size_ml) / 1000
    loss = taken - expected
    loss_pct = loss / taken * 100 if taken > 0 else 0.0

    return PackagingLoss(
        expected_volume_l=expected,
        loss_l=loss,
        loss_percent=loss_pct,
        level=classify_loss_percent(loss, loss_pct),
    )
