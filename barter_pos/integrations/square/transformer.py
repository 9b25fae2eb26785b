"""
Square data transformation.
Payment webhooks become NormalizedTransactions; settled split transactions
become Square order and payment request bodies.
"""

from typing import Any

from barter_pos.integrations.base import NormalizedTransaction, amount_to_cents
from barter_pos.integrations.square.models import SquarePayment
from barter_pos.models.checkout import SyncRequest


class SquareTransformer:
    """Transforms between Square payloads and canonical shapes."""

    @staticmethod
    def payment_to_transaction(payment: SquarePayment) -> NormalizedTransaction:
        """
        Square webhooks carry no line items; totals come from the Money objects.
        amount_money is the charged amount before tip.
        """
        amount = payment.amount_money or payment.total_money
        return NormalizedTransaction(
            external_transaction_id=payment.id,
            total_amount=(amount.amount / 100) if amount else 0.0,
            currency=amount.currency if amount else "USD",
            tax_amount=(payment.tax_money.amount / 100) if payment.tax_money else 0.0,
            tip_amount=(payment.tip_money.amount / 100) if payment.tip_money else 0.0,
            location_id=payment.location_id,
            transaction_date=payment.created_at,
        )

    @staticmethod
    def build_order(request: SyncRequest, location_id: str) -> dict[str, Any]:
        line_items = []
        for item in request.items:
            line_item: dict[str, Any] = {
                "name": item.name,
                "quantity": f"{item.quantity:g}",
                "base_price_money": {
                    "amount": amount_to_cents(item.unit_price),
                    "currency": request.currency,
                },
            }
            if item.external_id:
                line_item["catalog_object_id"] = item.external_id
            elif item.sku:
                line_item["variation_name"] = item.sku
            line_items.append(line_item)

        order: dict[str, Any] = {
            "location_id": location_id,
            "reference_id": request.transaction_id,
            "line_items": line_items,
            "metadata": {
                "barter_transaction_id": request.transaction_id,
                "barter_amount": f"{request.totals.barter_amount:.2f}",
                "cash_amount": f"{request.totals.cash_amount:.2f}",
            },
        }
        if request.totals.tax_amount > 0:
            # Tax applies to the cash portion only, so it is sent as a fixed amount
            order["service_charges"] = [
                {
                    "name": "Sales Tax (cash portion)",
                    "amount_money": {
                        "amount": amount_to_cents(request.totals.tax_amount),
                        "currency": request.currency,
                    },
                    "calculation_phase": "TOTAL_PHASE",
                }
            ]

        return {
            "idempotency_key": f"barter-order-{request.transaction_id}",
            "order": order,
        }

    @staticmethod
    def build_payment(request: SyncRequest, location_id: str, order_id: str) -> dict[str, Any]:
        """
        Square has no separate barter tender, so the whole order is recorded as one
        cash payment whose note carries the split.
        """
        totals = request.totals
        amount = amount_to_cents(totals.total + totals.barter_amount)
        return {
            "idempotency_key": f"barter-payment-{request.transaction_id}",
            "source_id": "CASH",
            "location_id": location_id,
            "order_id": order_id,
            "reference_id": request.transaction_id,
            "amount_money": {"amount": amount, "currency": request.currency},
            "cash_details": {
                "buyer_supplied_money": {"amount": amount, "currency": request.currency}
            },
            "note": (
                f"Split payment: ${totals.cash_amount:.2f} cash + "
                f"${totals.barter_amount:.2f} barter credits"
            ),
        }
