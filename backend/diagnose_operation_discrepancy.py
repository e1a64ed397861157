#!/usr/bin/env python3
"""
Diagnostic script to re-reconcile completed operations from what is stored.

For every completed operation context it reloads the stored line items,
recomputes the reconciliation against the stored total and compares it with
the reconciliation saved at submission time.

Usage: python diagnose_operation_discrepancy.py [OPERATION_ID]
Example: python diagnose_operation_discrepancy.py BOT-7
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
import sys
from typing import List, Optional

from pydantic import BaseModel

from app_config import ReconciliationSettings, load_config
from reconciliation_engine import (
    LineItem,
    Operation,
    ReconciliationResult,
    ReconciliationStatus,
    reconcile,
)
from volume_conversion_engine import Dimension, Quantity


class OperationAudit(BaseModel):
    operation_id: str
    kind: str
    line_item_count: int
    stored_status: Optional[str] = None
    recomputed: ReconciliationResult

    @property
    def consistent(self) -> bool:
        return (
            self.recomputed.status == ReconciliationStatus.BALANCED
            and self.stored_status == ReconciliationStatus.BALANCED.value
        )


def _stored_quantity(value: float, dimension: str) -> Quantity:
    if Dimension(dimension) == Dimension.WEIGHT:
        return Quantity.kilograms(value)
    return Quantity.liters(value)


def rebuild_operation(context: dict, documents: List[dict]) -> Operation:
    """Operation as stored: the context total plus one line item per document."""
    line_items = []
    for doc in documents:
        dimension = doc.get("dimension", Dimension.VOLUME.value)
        loss = doc.get("loss") or 0
        line_items.append(LineItem(
            target_id=doc["target_id"],
            quantity=_stored_quantity(doc["quantity"], dimension),
            loss=_stored_quantity(loss, dimension) if loss else None,
        ))
    total = Quantity.from_display(float(context.get("total_available") or 0), context.get("unit", "L"))
    return Operation(total_available=total, line_items=line_items)


async def collect_operation_audits(
    db,
    settings: ReconciliationSettings,
    operation_id: Optional[str] = None,
) -> List[OperationAudit]:
    query = {"status": "completed"}
    if operation_id:
        query["id"] = operation_id

    contexts = await db.operation_contexts.find(query, {"_id": 0}).to_list(1000)
    audits = []
    for context in contexts:
        documents = await db.operation_line_items.find({"operation_id": context["id"]}, {"_id": 0}).to_list(1000)
        operation = rebuild_operation(context, documents)
        audits.append(OperationAudit(
            operation_id=context["id"],
            kind=context.get("kind", "unknown"),
            line_item_count=len(documents),
            stored_status=(context.get("reconciliation") or {}).get("status"),
            recomputed=reconcile(operation, settings),
        ))
    return audits


def format_number(num):
    """Format large numbers with commas"""
    return f"{num:,.2f}"


async def diagnose_operations(db, settings: ReconciliationSettings, operation_id: Optional[str] = None):
    print("=" * 80)
    print(f"OPERATION RECONCILIATION DIAGNOSTIC{f' FOR: {operation_id}' if operation_id else ''}")
    print("=" * 80)
    print()

    audits = await collect_operation_audits(db, settings, operation_id)
    if not audits:
        print("❌ No completed operations found")
        return audits

    discrepancies = 0
    for audit in audits:
        result = audit.recomputed
        marker = "✓" if audit.consistent else "⚠️ "
        print(f"{marker} {audit.operation_id} ({audit.kind})")
        print(f"     - Line items: {audit.line_item_count}")
        print(f"     - Assigned: {format_number(result.assigned_total)}")
        print(f"     - Loss: {format_number(result.loss_total)}")
        print(f"     - Remaining: {format_number(result.remaining)}")
        print(f"     - Stored status: {audit.stored_status or 'N/A'} / recomputed: {result.status.value}")
        if not audit.consistent:
            discrepancies += 1
            if result.issue:
                print(f"     {result.issue.message}")

    print("\n" + "=" * 80)
    print(f"DIAGNOSTIC COMPLETE: {len(audits)} operation(s), {discrepancies} discrepancy(ies)")
    print("=" * 80)
    return audits


async def main():
    operation_id = sys.argv[1] if len(sys.argv) > 1 else None

    config = load_config()
    client = AsyncIOMotorClient(config.mongo_url)
    db = client[config.db_name]
    try:
        await diagnose_operations(db, config.reconciliation, operation_id)
    except Exception as e:
        print(f"❌ ERROR: {str(e)}")
        import traceback
        traceback.print_exc()
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())
