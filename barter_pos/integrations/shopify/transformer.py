"""
Shopify data transformation.
Order webhooks become NormalizedTransactions; settled split transactions become
Admin API order bodies with separate Cash and Barter Credits transactions.
"""

from datetime import datetime, timezone
from typing import Any

from barter_pos.integrations.base import NormalizedTransaction, to_float
from barter_pos.integrations.shopify.models import ShopifyOrder
from barter_pos.models.checkout import SyncRequest
from barter_pos.models.database import LineItem


class ShopifyTransformer:
    """Transforms between Shopify payloads and canonical shapes."""

    @staticmethod
    def order_to_transaction(order: ShopifyOrder) -> NormalizedTransaction:
        items = [
            LineItem(
                name=line.title or line.name or "",
                sku=line.sku or None,
                unit_price=to_float(line.price),
                quantity=line.quantity,
                external_id=str(line.variant_id) if line.variant_id else None,
            )
            for line in order.line_items
        ]
        return NormalizedTransaction(
            external_transaction_id=str(order.id),
            total_amount=to_float(order.total_price),
            currency=order.currency,
            tax_amount=to_float(order.total_tax),
            tip_amount=to_float(order.total_tip_received),
            discount_amount=to_float(order.total_discounts),
            items=items,
            location_id=str(order.location_id) if order.location_id else None,
            transaction_date=order.created_at,
        )

    @staticmethod
    def build_order(request: SyncRequest) -> dict[str, Any]:
        totals = request.totals
        line_items = []
        for item in request.items:
            line_item: dict[str, Any] = {
                "title": item.name,
                "price": f"{item.unit_price:.2f}",
                "quantity": int(item.quantity),
                "taxable": True,
            }
            if item.external_id:
                line_item["variant_id"] = int(item.external_id) if item.external_id.isdigit() else item.external_id
            if item.sku:
                line_item["sku"] = item.sku
            line_items.append(line_item)

        transactions = []
        if totals.cash_amount > 0 or totals.total > 0:
            transactions.append(
                {
                    "kind": "sale",
                    "status": "success",
                    "amount": f"{totals.total:.2f}",
                    "gateway": "Cash",
                    "currency": request.currency,
                }
            )
        if totals.barter_amount > 0:
            transactions.append(
                {
                    "kind": "sale",
                    "status": "success",
                    "amount": f"{totals.barter_amount:.2f}",
                    "gateway": "Barter Credits",
                    "currency": request.currency,
                }
            )

        tax_lines = []
        if totals.tax_amount > 0:
            if totals.tax_rate is not None:
                rate = totals.tax_rate / 100
            elif totals.cash_amount > 0:
                rate = round(totals.tax_amount / totals.cash_amount, 4)
            else:
                rate = 0.0
            tax_lines.append(
                {"price": f"{totals.tax_amount:.2f}", "rate": rate, "title": "Sales Tax"}
            )

        order: dict[str, Any] = {
            "line_items": line_items,
            "financial_status": "paid",
            "transactions": transactions,
            "tax_lines": tax_lines,
            "note": "Created via Barter settlement",
            "tags": "barter, split-payment",
            "note_attributes": [
                {"name": "barter_transaction_id", "value": request.transaction_id},
                {"name": "barter_amount", "value": f"{totals.barter_amount:.2f}"},
                {"name": "cash_amount", "value": f"{totals.cash_amount:.2f}"},
            ],
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }

        customer = request.customer_info or {}
        if customer.get("email"):
            name_parts = (customer.get("name") or "").split()
            order["customer"] = {
                "email": customer["email"],
                "first_name": name_parts[0] if name_parts else "Customer",
                "last_name": " ".join(name_parts[1:]),
            }

        return {"order": order}
