# backend/operation_form.py

"""
Operation Form - submission gate for press-run completions, bottling runs and
inventory adjustments.

State machine:

    editing -> validating -> {blocked_invalid | blocked_over | blocked_under | ready}
    ready -> submitting -> {success | failed}
    failed -> editing (inputs preserved)
    success is terminal

- Every edit re-enters validating; recompute is explicit and synchronous
- submitting is only reachable from ready; a second submit while one is in
  flight is rejected, and nothing moves the form out of submitting except
  the data source's answer
- Reconciliation and input errors never reach the data source
- A rejected submission leaves the inputs untouched so the user can correct
  and resubmit; nothing is retried automatically
- Display units are view state: switching one never rewrites the typed amount
"""

import copy
import logging
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from app_config import ReconciliationSettings
from operation_schemas import FieldError, parse_operation_payload
from reconciliation_engine import LineItem, ReconciliationResult, ReconciliationStatus, reconcile
from volume_conversion_engine import Quantity, from_canonical

logger = logging.getLogger(__name__)

# ==================== ENUMS ====================

class FormState(str, Enum):
    EDITING = "editing"
    VALIDATING = "validating"
    BLOCKED_INVALID = "blocked_invalid"
    BLOCKED_OVER = "blocked_over"
    BLOCKED_UNDER = "blocked_under"
    READY = "ready"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILED = "failed"


class RowSyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"


# Collection of rows edited per operation kind
ROW_COLLECTIONS: Dict[str, str] = {
    "press_run_completion": "assignments",
    "bottling": "rows",
    "inventory_adjustment": "lines",
}

# ==================== DATA SOURCE CONTRACT ====================

class CandidateTarget(BaseModel):
    """A vessel or SKU a line item can be assigned to"""
    id: str
    name: str
    capacity_l: Optional[float] = None


class OperationContext(BaseModel):
    operation_id: str
    kind: str
    total_available: Quantity
    candidate_targets: List[CandidateTarget] = Field(default_factory=list)


class SubmissionPayload(BaseModel):
    """Reconciled line items plus the operation's metadata"""
    operation_id: str
    kind: str
    payload: Dict[str, Any]
    line_items: List[LineItem]
    reconciliation: ReconciliationResult


class SubmissionResult(BaseModel):
    success: bool
    created_ids: List[str] = Field(default_factory=list)


class SubmissionRejectedError(Exception):
    """The data source refused the submission"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FormStateError(Exception):
    """Action not allowed in the form's current state"""
    def __init__(self, state: FormState, action: str):
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} while form is {state.value}")


class OperationDataSource(Protocol):
    async def fetch_operation_context(self, operation_id: str) -> OperationContext:
        ...

    async def submit_operation(self, payload: SubmissionPayload) -> SubmissionResult:
        ...


# ==================== FORM ====================

def _seed_total(raw: Dict[str, Any], kind: str, total: Quantity) -> None:
    """Fill the kind's total field from the context unless the user already set it."""
    value = total.display_value
    unit = total.display_unit
    if kind == "press_run_completion":
        raw.setdefault("juice_volume", {"value": value, "unit": unit})
    elif kind == "bottling":
        raw.setdefault("volume_taken", {"value": value, "unit": unit})
    elif kind == "inventory_adjustment":
        raw.setdefault("on_hand", value)
        raw.setdefault("unit", unit)


class OperationForm:
    """
    Client-side state of one operation being edited.

    Owns the raw inputs, the last reconciliation result and the submission
    state. Settings are passed in explicitly.
    """

    def __init__(
        self,
        operation_id: str,
        data_source: OperationDataSource,
        settings: Optional[ReconciliationSettings] = None,
    ):
        self.operation_id = operation_id
        self.data_source = data_source
        self.settings = settings or ReconciliationSettings()

        self.context: Optional[OperationContext] = None
        self.values: Dict[str, Any] = {}
        self.state = FormState.EDITING
        self.history: List[FormState] = [FormState.EDITING]

        self.field_errors: List[FieldError] = []
        self.result: Optional[ReconciliationResult] = None
        self.row_states: List[RowSyncState] = []
        self.display_units: Dict[str, str] = {}
        self.created_ids: List[str] = []
        self.last_error: Optional[str] = None

    # ---------- state ----------

    def _transition(self, state: FormState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def locked(self) -> bool:
        """Inputs are frozen while a submission is in flight and after it succeeded."""
        return self.state in (FormState.SUBMITTING, FormState.SUCCESS)

    @property
    def kind(self) -> Optional[str]:
        return self.values.get("kind")

    @property
    def rows(self) -> List[Dict[str, Any]]:
        collection = ROW_COLLECTIONS.get(self.kind or "")
        if not collection:
            return []
        return self.values.setdefault(collection, [])

    @property
    def can_submit(self) -> bool:
        return self.state == FormState.READY

    # ---------- query ----------

    async def load(self, values: Optional[Dict[str, Any]] = None) -> OperationContext:
        """Fetch the operation context once on mount and seed the inputs."""
        if self.locked:
            raise FormStateError(self.state, "load")
        self.context = await self.data_source.fetch_operation_context(self.operation_id)
        self.values = copy.deepcopy(values) if values else {}
        self.values.setdefault("kind", self.context.kind)
        _seed_total(self.values, self.context.kind, self.context.total_available)
        self.row_states = [RowSyncState.IDLE for _ in self.rows]
        self.validate()
        return self.context

    async def refresh(self) -> OperationContext:
        """
        Re-fetch the context; inputs the user typed are kept. The form is only
        revalidated while it can still be edited.
        """
        self.context = await self.data_source.fetch_operation_context(self.operation_id)
        if not self.locked:
            self.validate()
        return self.context

    # ---------- edits ----------

    def _begin_edit(self) -> None:
        if self.locked:
            raise FormStateError(self.state, "edit")
        if self.state != FormState.EDITING:
            self._transition(FormState.EDITING)
        self.last_error = None

    def edit(self, **changes: Any) -> Optional[ReconciliationResult]:
        self._begin_edit()
        self.values.update(changes)
        if "kind" in changes or ROW_COLLECTIONS.get(self.kind or "") in changes:
            self.row_states = [RowSyncState.IDLE for _ in self.rows]
        return self.validate()

    def add_row(self, row: Dict[str, Any]) -> Optional[ReconciliationResult]:
        self._begin_edit()
        self.rows.append(dict(row))
        self.row_states.append(RowSyncState.IDLE)
        return self.validate()

    def update_row(self, index: int, **changes: Any) -> Optional[ReconciliationResult]:
        self._begin_edit()
        self.rows[index].update(changes)
        self.row_states[index] = RowSyncState.IDLE
        return self.validate()

    def remove_row(self, index: int) -> Optional[ReconciliationResult]:
        self._begin_edit()
        del self.rows[index]
        del self.row_states[index]
        return self.validate()

    def _typed_quantity(self, field: str) -> Optional[Quantity]:
        current = self.values.get(field)
        if not isinstance(current, dict):
            return None
        value = current.get("value")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return None
        return Quantity.from_display(value, current.get("unit", "L"))

    def display_quantity(self, field: str) -> Optional[Quantity]:
        """The typed amount of `field` in the unit it is currently shown in."""
        quantity = self._typed_quantity(field)
        if quantity is None:
            return None
        return quantity.with_display_unit(self.display_units.get(field, quantity.display_unit))

    def switch_display_unit(self, field: str, unit: str) -> Optional[Quantity]:
        """
        Show a volume/weight input in another unit. The typed value and unit
        stay as entered, so the reconciliation and the form state are untouched.

        Raises:
            ConversionError: If `unit` is unknown or of another dimension
        """
        quantity = self._typed_quantity(field)
        if quantity is None:
            return None
        switched = quantity.with_display_unit(unit)
        self.display_units[field] = switched.display_unit
        return switched

    def set_display_value(self, field: str, value: float) -> Optional[ReconciliationResult]:
        """Type a new amount for `field` in the unit it is currently shown in."""
        shown = self.display_quantity(field)
        unit = shown.display_unit if shown is not None else self.display_units.get(field, "L")
        return self.edit(**{field: {"value": value, "unit": unit}})

    def resume_editing(self) -> None:
        """Leave the failed state; the last input is still in place."""
        if self.state == FormState.FAILED:
            self._transition(FormState.EDITING)
            self.validate()

    # ---------- validation ----------

    def validate(self) -> Optional[ReconciliationResult]:
        """Recompute everything derived from the current inputs."""
        if self.locked:
            raise FormStateError(self.state, "validate")
        self._transition(FormState.VALIDATING)

        payload, errors = parse_operation_payload(self.values)
        self.field_errors = errors
        if payload is None:
            self.result = None
            self._transition(FormState.BLOCKED_INVALID)
            return None

        self.result = reconcile(payload.to_operation(), self.settings)
        if self.result.status == ReconciliationStatus.INVALID:
            self._transition(FormState.BLOCKED_INVALID)
        elif self.result.status == ReconciliationStatus.OVER:
            self._transition(FormState.BLOCKED_OVER)
        elif self.result.status == ReconciliationStatus.UNDER:
            self._transition(FormState.BLOCKED_UNDER)
        else:
            self._transition(FormState.READY)
        return self.result

    def remaining_in_display_unit(self) -> Optional[float]:
        if self.result is None:
            return None
        unit = self.settings.volume_display_unit
        if self.values.get("kind") == "inventory_adjustment":
            unit = self.values.get("unit", unit)
        return from_canonical(self.result.remaining, unit)

    # ---------- mutation ----------

    def _build_submission(self) -> SubmissionPayload:
        payload, _ = parse_operation_payload(self.values)
        operation = payload.to_operation()
        return SubmissionPayload(
            operation_id=self.operation_id,
            kind=payload.kind,
            payload=payload.model_dump(mode="json"),
            line_items=operation.line_items,
            reconciliation=self.result,
        )

    async def submit(self) -> SubmissionResult:
        """
        Send the reconciled operation exactly once.

        Raises:
            FormStateError: If the form is not ready (blocked or in flight)
        """
        if self.state != FormState.READY:
            raise FormStateError(self.state, "submit")

        submission = self._build_submission()
        snapshot_values = copy.deepcopy(self.values)
        snapshot_rows = list(self.row_states)

        self._transition(FormState.SUBMITTING)
        self.row_states = [RowSyncState.SYNCING for _ in self.row_states]
        logger.info(f"Submitting {submission.kind} {self.operation_id} with {len(submission.line_items)} line items")

        try:
            result = await self.data_source.submit_operation(submission)
        except SubmissionRejectedError as e:
            logger.warning(f"Submission of {self.operation_id} rejected: {e.message}")
            return self._fail(e.message, snapshot_values, snapshot_rows)
        except Exception as e:
            logger.error(f"Unexpected error submitting {self.operation_id}: {e}", exc_info=True)
            return self._fail(f"Unexpected error: {str(e)}", snapshot_values, snapshot_rows)

        if not result.success:
            return self._fail("Submission was not accepted", snapshot_values, snapshot_rows)

        self.created_ids = list(result.created_ids)
        self.row_states = [RowSyncState.SYNCED for _ in self.row_states]
        self._transition(FormState.SUCCESS)
        return result

    def _fail(self, message: str, values: Dict[str, Any], row_states: List[RowSyncState]) -> SubmissionResult:
        self.values = values
        self.row_states = row_states
        self.last_error = message
        self._transition(FormState.FAILED)
        return SubmissionResult(success=False)
