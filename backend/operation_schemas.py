# backend/operation_schemas.py

"""
Operation payload schemas.

Each operation kind has its own validated payload; the `kind` field is the
tag of the union. Input errors (non-numeric, NaN, non-positive, missing) are
caught here and reported per field so the form can block submission before
anything is reconciled or sent.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from reconciliation_engine import LineItem, Operation, Ratio, yield_percent
from volume_conversion_engine import (
    Dimension,
    Quantity,
    UNIT_DIMENSIONS,
    UnknownUnitError,
    normalize_unit,
    to_canonical,
)

# Upper bounds for cidery operations (canonical units)
MAX_VOLUME_L = 50000
MAX_WEIGHT_KG = 100000
MAX_UNITS = 1000000

# Row id used for loss drawn from the total that reaches no target
LOSS_TARGET_ID = "loss"

OPERATION_KINDS = ("press_run_completion", "bottling", "inventory_adjustment")


class FieldError(BaseModel):
    field: str
    message: str


# ==================== QUANTITY INPUTS ====================

def _normalize_for(unit: str, dimension: Dimension) -> str:
    try:
        normalized = normalize_unit(unit)
    except UnknownUnitError as e:
        raise ValueError(e.message)
    if UNIT_DIMENSIONS[normalized] != dimension:
        raise ValueError(f"Unit '{unit}' is not a {dimension.value.lower()} unit")
    return normalized


class VolumeInput(BaseModel):
    """A volume as typed: value in its display unit"""
    unit: str = "L"
    value: float = Field(gt=0, allow_inf_nan=False)

    @field_validator("unit")
    @classmethod
    def _volume_unit(cls, v: str) -> str:
        return _normalize_for(v, Dimension.VOLUME)

    @field_validator("value")
    @classmethod
    def _within_bounds(cls, v: float, info) -> float:
        unit = info.data.get("unit", "L") if info.data else "L"
        if to_canonical(v, unit) > MAX_VOLUME_L:
            raise ValueError(f"Volume cannot exceed {MAX_VOLUME_L:,}L")
        return v

    @property
    def liters(self) -> float:
        return to_canonical(self.value, self.unit)

    def to_quantity(self) -> Quantity:
        return Quantity.from_display(self.value, self.unit)


class LossInput(BaseModel):
    """Loss may be zero, never negative"""
    unit: str = "L"
    value: float = Field(default=0, ge=0, allow_inf_nan=False)

    @field_validator("unit")
    @classmethod
    def _volume_unit(cls, v: str) -> str:
        return _normalize_for(v, Dimension.VOLUME)

    @field_validator("value")
    @classmethod
    def _within_bounds(cls, v: float, info) -> float:
        unit = info.data.get("unit", "L") if info.data else "L"
        if to_canonical(v, unit) > MAX_VOLUME_L:
            raise ValueError(f"Loss cannot exceed {MAX_VOLUME_L:,}L")
        return v

    def to_quantity(self) -> Quantity:
        return Quantity.from_display(self.value, self.unit)


class WeightInput(BaseModel):
    unit: str = "kg"
    value: float = Field(gt=0, allow_inf_nan=False)

    @field_validator("unit")
    @classmethod
    def _weight_unit(cls, v: str) -> str:
        return _normalize_for(v, Dimension.WEIGHT)

    @field_validator("value")
    @classmethod
    def _within_bounds(cls, v: float, info) -> float:
        unit = info.data.get("unit", "kg") if info.data else "kg"
        if to_canonical(v, unit) > MAX_WEIGHT_KG:
            raise ValueError(f"Weight cannot exceed {MAX_WEIGHT_KG:,}kg")
        return v

    @property
    def kilograms(self) -> float:
        return to_canonical(self.value, self.unit)

    def to_quantity(self) -> Quantity:
        return Quantity.from_display(self.value, self.unit)


class OperationMetadata(BaseModel):
    """Fields shared by every operation kind"""
    performed_at: datetime = Field(default_factory=datetime.now)
    notes: Optional[str] = None
    labor_hours: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)


# ==================== PRESS RUN COMPLETION ====================

class VesselAssignmentInput(BaseModel):
    vessel_id: str = Field(min_length=1)
    volume: VolumeInput
    loss: Optional[LossInput] = None


class PressRunCompletionPayload(OperationMetadata):
    """Juice from a press run assigned to one or more vessels"""
    kind: Literal["press_run_completion"] = "press_run_completion"
    press_run_id: str = Field(min_length=1)
    juice_volume: VolumeInput
    fruit_weight: Optional[WeightInput] = None
    assignments: List[VesselAssignmentInput] = Field(min_length=1)

    def to_operation(self) -> Operation:
        return Operation(
            total_available=self.juice_volume.to_quantity(),
            line_items=[
                LineItem(
                    target_id=a.vessel_id,
                    quantity=a.volume.to_quantity(),
                    loss=a.loss.to_quantity() if a.loss else None,
                )
                for a in self.assignments
            ],
        )

    def extraction_rate(self) -> Ratio:
        weight = self.fruit_weight.kilograms if self.fruit_weight else None
        return yield_percent(self.juice_volume.liters, weight)


# ==================== BOTTLING ====================

class PackageRowInput(BaseModel):
    sku: str = Field(min_length=1)
    package_size_ml: float = Field(gt=0, le=MAX_VOLUME_L * 1000, allow_inf_nan=False)
    units_produced: int = Field(gt=0, le=MAX_UNITS)

    @property
    def volume_l(self) -> float:
        return self.units_produced * self.package_size_ml / 1000


class BottlingPayload(OperationMetadata):
    """Liquid drawn from a vessel into packages; loss is drawn from the same vessel"""
    kind: Literal["bottling"] = "bottling"
    batch_id: str = Field(min_length=1)
    vessel_id: str = Field(min_length=1)
    volume_taken: VolumeInput
    rows: List[PackageRowInput] = Field(min_length=1)
    loss: Optional[LossInput] = None

    def to_operation(self) -> Operation:
        line_items = [
            LineItem(target_id=row.sku, quantity=Quantity.liters(row.volume_l, self.volume_taken.unit))
            for row in self.rows
        ]
        if self.loss is not None and self.loss.value > 0:
            loss = self.loss.to_quantity()
            line_items.append(LineItem(target_id=LOSS_TARGET_ID, quantity=loss, loss=loss))
        return Operation(total_available=self.volume_taken.to_quantity(), line_items=line_items)


# ==================== INVENTORY ADJUSTMENT ====================

class AdjustmentLineInput(BaseModel):
    """Where part of the recorded on-hand quantity actually went"""
    location_id: str = Field(min_length=1)
    quantity: float = Field(ge=0, allow_inf_nan=False)
    reason: Optional[str] = None


class InventoryAdjustmentPayload(OperationMetadata):
    """
    Recorded on-hand quantity reconciled against counted locations and
    written-off shrinkage. Volume or weight, chosen by `unit`.
    """
    kind: Literal["inventory_adjustment"] = "inventory_adjustment"
    item_id: str = Field(min_length=1)
    on_hand: float = Field(gt=0, allow_inf_nan=False)
    unit: str = "L"
    lines: List[AdjustmentLineInput] = Field(min_length=1)
    shrinkage: float = Field(default=0, ge=0, allow_inf_nan=False)
    reason: str = Field(min_length=1)

    @field_validator("unit")
    @classmethod
    def _known_unit(cls, v: str) -> str:
        try:
            normalized = normalize_unit(v)
        except UnknownUnitError as e:
            raise ValueError(e.message)
        if UNIT_DIMENSIONS[normalized] == Dimension.TEMPERATURE:
            raise ValueError(f"Unit '{v}' cannot measure inventory")
        return normalized

    @model_validator(mode="after")
    def _within_bounds(self):
        if UNIT_DIMENSIONS[self.unit] == Dimension.WEIGHT:
            limit, canonical = MAX_WEIGHT_KG, "kg"
        else:
            limit, canonical = MAX_VOLUME_L, "L"
        amounts = [self.on_hand, self.shrinkage] + [line.quantity for line in self.lines]
        if any(to_canonical(amount, self.unit) > limit for amount in amounts):
            raise ValueError(f"Inventory quantities cannot exceed {limit:,}{canonical}")
        return self

    def to_operation(self) -> Operation:
        line_items = [
            LineItem(target_id=line.location_id, quantity=Quantity.from_display(line.quantity, self.unit))
            for line in self.lines
        ]
        if self.shrinkage > 0:
            loss = Quantity.from_display(self.shrinkage, self.unit)
            line_items.append(LineItem(target_id=LOSS_TARGET_ID, quantity=loss, loss=loss))
        return Operation(total_available=Quantity.from_display(self.on_hand, self.unit), line_items=line_items)


OperationPayload = Annotated[
    Union[PressRunCompletionPayload, BottlingPayload, InventoryAdjustmentPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(OperationPayload)


def _field_path(loc: tuple) -> str:
    parts = list(loc)
    if parts and parts[0] in OPERATION_KINDS:
        parts = parts[1:]
    return ".".join(str(p) for p in parts) or "__root__"


def collect_field_errors(exc: ValidationError) -> List[FieldError]:
    return [FieldError(field=_field_path(err["loc"]), message=err["msg"]) for err in exc.errors()]


def parse_operation_payload(raw: dict) -> Tuple[Optional[BaseModel], List[FieldError]]:
    """
    Validate a raw payload against its kind's schema.

    Returns (payload, []) when valid and (None, field_errors) otherwise.
    """
    try:
        return _payload_adapter.validate_python(raw), []
    except ValidationError as e:
        return None, collect_field_errors(e)
