# backend/operation_store.py

"""
MongoDB-backed data source for operation forms.

Provides the two capabilities an operation form consumes:
- fetch_operation_context: baseline quantity + selectable vessels/SKUs
- submit_operation: stores the reconciled payload as-is

No business logic lives here; the payload has already been validated and
reconciled before it arrives.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import List, Optional

from operation_form import (
    CandidateTarget,
    OperationContext,
    SubmissionPayload,
    SubmissionRejectedError,
    SubmissionResult,
)
from operation_schemas import LOSS_TARGET_ID
from reconciliation_engine import ReconciliationStatus
from volume_conversion_engine import Quantity

logger = logging.getLogger(__name__)


class OperationNotFoundError(Exception):
    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation '{operation_id}' not found")


class MongoOperationStore:
    """
    Reads operation contexts from `operation_contexts` and writes submitted
    line items to `operation_line_items`, one document per row.
    """

    def __init__(self, db):
        """
        Args:
            db: motor database instance
        """
        self.db = db

    # Pure data access
    async def get_context_document(self, operation_id: str) -> Optional[dict]:
        return await self.db.operation_contexts.find_one({"id": operation_id}, {"_id": 0})

    async def fetch_operation_context(self, operation_id: str) -> OperationContext:
        doc = await self.get_context_document(operation_id)
        if not doc:
            raise OperationNotFoundError(operation_id)

        total = Quantity.from_display(float(doc.get("total_available") or 0), doc.get("unit", "L"))
        targets: List[CandidateTarget] = [
            CandidateTarget(
                id=t["id"],
                name=t.get("name", t["id"]),
                capacity_l=t.get("capacity_l"),
            )
            for t in doc.get("candidate_targets", [])
        ]
        return OperationContext(
            operation_id=operation_id,
            kind=doc["kind"],
            total_available=total,
            candidate_targets=targets,
        )

    async def submit_operation(self, payload: SubmissionPayload) -> SubmissionResult:
        if payload.reconciliation.status != ReconciliationStatus.BALANCED:
            raise SubmissionRejectedError(
                f"Operation is {payload.reconciliation.status.value}-allocated and cannot be saved"
            )

        context = await self.get_context_document(payload.operation_id)
        if not context:
            raise SubmissionRejectedError(f"Operation '{payload.operation_id}' not found")
        if context.get("status") == "completed":
            raise SubmissionRejectedError(f"Operation '{payload.operation_id}' is already completed")

        valid_targets = {t["id"] for t in context.get("candidate_targets", [])}
        now = datetime.now(timezone.utc).isoformat()
        documents = []
        for item in payload.line_items:
            if valid_targets and item.target_id != LOSS_TARGET_ID and item.target_id not in valid_targets:
                raise SubmissionRejectedError(f"Target '{item.target_id}' is not available for this operation")
            documents.append({
                "id": str(uuid.uuid4()),
                "operation_id": payload.operation_id,
                "kind": payload.kind,
                "target_id": item.target_id,
                "quantity": item.quantity.canonical_value,
                "dimension": item.quantity.dimension.value,
                "loss": item.loss_value,
                "created_at": now,
            })

        await self.db.operation_line_items.insert_many(documents)
        await self.db.operation_contexts.update_one(
            {"id": payload.operation_id},
            {"$set": {
                "status": "completed",
                "completed_at": now,
                "payload": payload.payload,
                "reconciliation": payload.reconciliation.model_dump(mode="json"),
            }}
        )
        logger.info(f"Stored {len(documents)} line items for operation {payload.operation_id}")
        return SubmissionResult(success=True, created_ids=[d["id"] for d in documents])
