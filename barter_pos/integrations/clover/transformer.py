"""
Clover data transformation.
Clover amounts are integer cents and quantities are thousandths (unitQty).
"""

from datetime import datetime, timezone
from typing import Any

from barter_pos.integrations.base import NormalizedTransaction, amount_to_cents, cents_to_amount
from barter_pos.models.checkout import SyncRequest
from barter_pos.models.database import TRANSACTION_COMPLETED, TRANSACTION_FAILED

UNIT_QTY_SCALE = 1000


class CloverTransformer:
    """Transforms between Clover payloads and canonical shapes."""

    @staticmethod
    def payment_to_transaction(payment: dict[str, Any]) -> NormalizedTransaction:
        created = payment.get("createdTime")
        transaction_date = (
            datetime.fromtimestamp(created / 1000, tz=timezone.utc) if created else None
        )
        return NormalizedTransaction(
            external_transaction_id=payment["id"],
            total_amount=cents_to_amount(payment.get("amount")),
            currency=payment.get("currency") or "USD",
            tax_amount=cents_to_amount(payment.get("taxAmount")),
            tip_amount=cents_to_amount(payment.get("tipAmount")),
            transaction_date=transaction_date,
            status=TRANSACTION_COMPLETED if payment.get("result", "SUCCESS") == "SUCCESS" else TRANSACTION_FAILED,
        )

    @staticmethod
    def build_atomic_order(request: SyncRequest) -> dict[str, Any]:
        totals = request.totals
        line_items = []
        for item in request.items:
            line_item: dict[str, Any] = {
                "name": item.name,
                "price": amount_to_cents(item.unit_price),
                "unitQty": int(round(item.quantity * UNIT_QTY_SCALE)),
            }
            if item.external_id:
                line_item["item"] = {"id": item.external_id}
            line_items.append(line_item)

        return {
            "orderCart": {
                "lineItems": line_items,
                "note": (
                    f"Barter transaction: ${totals.cash_amount:.2f} cash + "
                    f"${totals.barter_amount:.2f} barter"
                ),
                "title": f"Barter {request.transaction_id}",
            }
        }

    @staticmethod
    def build_payment(request: SyncRequest) -> dict[str, Any]:
        totals = request.totals
        return {
            "amount": amount_to_cents(totals.total),
            "taxAmount": amount_to_cents(totals.tax_amount),
            "tender": {"label": "Cash + Barter", "labelKey": "com.clover.tender.cash"},
            "note": (
                f"Split: ${totals.cash_amount:.2f} cash, ${totals.barter_amount:.2f} barter"
            ),
            "externalPaymentId": request.transaction_id,
        }
