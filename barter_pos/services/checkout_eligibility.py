"""
Checkout eligibility service.
Classifies cart line items against the merchant catalog and computes how much
of the cart barter credits may pay for. Restricted items are always paid in cash.
"""

import re
from typing import Any, Optional

import structlog

from barter_pos.errors import CheckoutValidationError, InvalidArgumentError, ValidationIssue
from barter_pos.models.checkout import (
    CheckoutSplit,
    CheckoutTransaction,
    CheckoutValidation,
    ClassifiedItem,
    EnhancedBarterPayment,
    ProductEligibility,
)
from barter_pos.models.database import LineItem
from barter_pos.services.supabase_service import SettlementStore

logger = structlog.get_logger()

UNMATCHED_ELIGIBLE = "eligible"
UNMATCHED_RESTRICTED = "restricted"
UNMATCHED_POLICIES = (UNMATCHED_ELIGIBLE, UNMATCHED_RESTRICTED)

NOT_IN_CATALOG_REASON = "Product not found in catalog"
BARTER_DISABLED_REASON = "Barter disabled for this product"

# Codes are interpolated into a PostgREST or= filter
LOOKUP_CODE_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class CheckoutEligibilityMatcher:
    """Resolves line items to catalog products and splits them by barter eligibility."""

    def __init__(self, store: SettlementStore, unmatched_item_policy: str = UNMATCHED_ELIGIBLE):
        if unmatched_item_policy not in UNMATCHED_POLICIES:
            raise InvalidArgumentError(
                f"Unknown unmatched item policy: {unmatched_item_policy}"
            )
        self.store = store
        self.unmatched_item_policy = unmatched_item_policy

    def match(self, transaction: CheckoutTransaction, merchant_id: str) -> CheckoutSplit:
        """
        Classify every line item of a cart.

        Args:
            transaction: Cart with line items
            merchant_id: Merchant whose catalog is consulted

        Returns:
            CheckoutSplit with eligible / restricted items and subtotals
        """
        split = CheckoutSplit()
        for item in transaction.items:
            eligibility = self.check_item(item, merchant_id)
            classified = ClassifiedItem(item=item, eligibility=eligibility)
            if eligibility.is_barter_eligible:
                split.eligible_items.append(classified)
                split.eligible_subtotal += classified.total_price
            else:
                split.restricted_items.append(classified)
                split.restricted_subtotal += classified.total_price

        split.total_subtotal = split.eligible_subtotal + split.restricted_subtotal
        split.has_restricted_items = len(split.restricted_items) > 0

        logger.info(
            "Checkout items classified",
            merchant_id=merchant_id,
            eligible_count=len(split.eligible_items),
            restricted_count=len(split.restricted_items),
        )
        return split

    def check_item(self, item: LineItem, merchant_id: str) -> ProductEligibility:
        code = item.lookup_code
        if not code:
            return self._unmatched(item)
        if not LOOKUP_CODE_PATTERN.match(code):
            logger.warning("Skipping catalog lookup for malformed code", merchant_id=merchant_id)
            return self._unmatched(item)

        try:
            product = self.store.find_catalog_product(merchant_id, code)
        except Exception as e:
            logger.warning(
                "Catalog lookup failed, applying unmatched item policy",
                merchant_id=merchant_id,
                code=code,
                error=str(e),
            )
            return self._unmatched(item)

        if product is None:
            return self._unmatched(item)
        return product_eligibility(product)

    def _unmatched(self, item: LineItem) -> ProductEligibility:
        restricted = self.unmatched_item_policy == UNMATCHED_RESTRICTED
        return ProductEligibility(
            product_name=item.name or None,
            sku=item.sku,
            is_barter_eligible=not restricted,
            restriction_reason=NOT_IN_CATALOG_REASON if restricted else None,
            category_name=item.category,
            matched=False,
        )


def product_eligibility(product: dict[str, Any]) -> ProductEligibility:
    """Build the eligibility decision for a products_with_eligibility row."""
    category_restricted = bool(product.get("category_is_restricted"))
    eligible = (
        bool(product.get("is_barter_eligible"))
        and bool(product.get("barter_enabled", True))
        and not category_restricted
    )

    reason = None
    if not eligible:
        if product.get("restriction_reason"):
            reason = product["restriction_reason"]
        elif category_restricted:
            reason = f"Restricted category: {product.get('category_name') or 'Unknown'}"
        else:
            reason = BARTER_DISABLED_REASON

    return ProductEligibility(
        product_id=str(product["id"]) if product.get("id") is not None else None,
        product_name=product.get("name"),
        sku=product.get("sku"),
        is_barter_eligible=eligible,
        restriction_reason=reason,
        category_name=product.get("category_name"),
        category_is_restricted=category_restricted,
        matched=True,
    )


def calculate_enhanced_payment(
    split: CheckoutSplit,
    barter_percentage: float,
    available_credits: float,
    tax_rate: float = 0.0,
) -> EnhancedBarterPayment:
    """
    Calculate the cash / barter breakdown of a classified cart.

    Barter is only taken from the eligible subtotal and tax only applies to the
    cash portion.

    Args:
        split: Classified cart
        barter_percentage: Requested share of the eligible subtotal (0-100)
        available_credits: Customer barter credit balance
        tax_rate: Tax rate in percent

    Raises:
        InvalidArgumentError: On out-of-range inputs
    """
    if barter_percentage < 0 or barter_percentage > 100:
        raise InvalidArgumentError("Barter percentage must be between 0 and 100")
    if available_credits < 0:
        raise InvalidArgumentError("Available credits cannot be negative")
    if tax_rate < 0:
        raise InvalidArgumentError("Tax rate cannot be negative")
    if split.eligible_subtotal < 0 or split.restricted_subtotal < 0:
        raise InvalidArgumentError("Cart subtotals cannot be negative")

    max_barter_amount = min(available_credits, split.eligible_subtotal)
    barter_amount = min(max_barter_amount, split.eligible_subtotal * barter_percentage / 100)

    cash_for_eligible_items = split.eligible_subtotal - barter_amount
    cash_for_restricted_items = split.restricted_subtotal
    total_cash_subtotal = cash_for_eligible_items + cash_for_restricted_items

    tax_on_cash = total_cash_subtotal * tax_rate / 100
    final_total = total_cash_subtotal + tax_on_cash

    return EnhancedBarterPayment(
        eligible_subtotal=split.eligible_subtotal,
        restricted_subtotal=split.restricted_subtotal,
        max_barter_amount=max_barter_amount,
        barter_amount=barter_amount,
        cash_for_eligible_items=cash_for_eligible_items,
        cash_for_restricted_items=cash_for_restricted_items,
        total_cash_subtotal=total_cash_subtotal,
        tax_rate=tax_rate,
        tax_on_cash=tax_on_cash,
        final_total=final_total,
        barter_credits_remaining=available_credits - barter_amount,
        eligible_items=split.eligible_items,
        restricted_items=split.restricted_items,
    )


def validate_payment(
    payment: EnhancedBarterPayment, split: Optional[CheckoutSplit] = None
) -> CheckoutValidation:
    """Check a payment breakdown before it is settled."""
    eligible_subtotal = split.eligible_subtotal if split else payment.eligible_subtotal
    restricted_items = split.restricted_items if split else payment.restricted_items
    restricted_subtotal = split.restricted_subtotal if split else payment.restricted_subtotal

    errors: list[ValidationIssue] = []
    warnings: list[str] = []

    if payment.barter_amount > payment.max_barter_amount:
        errors.append(
            ValidationIssue(
                ValidationIssue.INSUFFICIENT_CREDITS,
                f"Barter amount ${payment.barter_amount:.2f} exceeds available "
                f"${payment.max_barter_amount:.2f}",
            )
        )
    if payment.barter_amount > eligible_subtotal:
        errors.append(
            ValidationIssue(
                ValidationIssue.BARTER_ON_RESTRICTED,
                "Barter credits cannot be applied to restricted items",
            )
        )
    if restricted_items:
        warnings.append(
            f"{len(restricted_items)} restricted item(s) totaling "
            f"${restricted_subtotal:.2f} must be paid in cash only"
        )

    return CheckoutValidation(
        is_valid=not errors,
        errors=[issue.to_dict() for issue in errors],
        warnings=warnings,
    )


def ensure_valid(payment: EnhancedBarterPayment, split: Optional[CheckoutSplit] = None) -> CheckoutValidation:
    """Like validate_payment, but raises CheckoutValidationError when invalid."""
    validation = validate_payment(payment, split)
    if not validation.is_valid:
        raise CheckoutValidationError(
            [ValidationIssue(error["code"], error["message"]) for error in validation.errors]
        )
    return validation
