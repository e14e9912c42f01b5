"""Seller discount codes: validation, redemption and management.

Usage counters are consumed with a compare-and-swap UPDATE
(`usage_count = n + 1 WHERE usage_count = n`), so two checkouts racing for
the last remaining use cannot both succeed. Every failed swap means some
other redemption succeeded, so the retry loop always makes progress.

Per-buyer allowances are held the same way by the usage rows themselves:
each redemption inserts a row numbered 0..per_user_limit-1 under a unique
(discount_code_id, user_id, use_index) index, so a buyer racing two
checkouts gets at most per_user_limit rows.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError

from marketplace.api.middleware.error_handler import (
    AuthorizationError,
    CodeExpiredError,
    CodeInactiveError,
    CodeNotYetActiveError,
    ConflictError,
    DiscountError,
    InvalidStateError,
    MinimumNotMetError,
    NotFoundError,
    PerUserLimitError,
    UsageExceededError,
    ValidationError,
)
from marketplace.core.config import get_settings
from marketplace.core.supabase import get_supabase_client
from marketplace.models.discount import DiscountRejection, DiscountType
from marketplace.models.order import PaymentHoldStatus
from marketplace.schemas.discount import DiscountCodeCreate, DiscountValidation
from marketplace.services.order_service import OrderService, utc_now

logger = logging.getLogger(__name__)

USAGE_TABLE = "discount_code_usage"
UNIQUE_VIOLATION = "23505"
USER_SLOT_CONSTRAINT = "discount_code_usage_user_slot_key"

REJECTION_MESSAGES: dict[DiscountRejection, str] = {
    DiscountRejection.NOT_FOUND: "Invalid discount code",
    DiscountRejection.INACTIVE: "This discount code is no longer active",
    DiscountRejection.NOT_YET_ACTIVE: "This discount code is not active yet",
    DiscountRejection.EXPIRED: "This discount code has expired",
    DiscountRejection.USAGE_EXCEEDED: "This discount code has reached its usage limit",
    DiscountRejection.PER_USER_LIMIT: "You have already used this discount code the maximum number of times",
    DiscountRejection.MINIMUM_NOT_MET: "Your cart does not meet the minimum purchase for this discount",
}

REJECTION_ERRORS: dict[DiscountRejection, type[DiscountError]] = {
    DiscountRejection.INACTIVE: CodeInactiveError,
    DiscountRejection.NOT_YET_ACTIVE: CodeNotYetActiveError,
    DiscountRejection.EXPIRED: CodeExpiredError,
    DiscountRejection.USAGE_EXCEEDED: UsageExceededError,
    DiscountRejection.PER_USER_LIMIT: PerUserLimitError,
    DiscountRejection.MINIMUM_NOT_MET: MinimumNotMetError,
}


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def compute_discount(discount: dict[str, Any], cart_total: int) -> int:
    """Discount in cents for a cart, never exceeding the cart itself.

    Percentage values are whole percents. The optional max_discount caps
    either type.
    """
    discount_type = DiscountType(discount["discount_type"])
    if discount_type == DiscountType.PERCENTAGE:
        amount = (Decimal(cart_total) * Decimal(discount["value"]) / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    elif discount_type == DiscountType.FIXED:
        amount = Decimal(discount["value"])
    else:
        # Shipping is waived separately; nothing comes off the goods total.
        amount = Decimal(0)

    max_discount = discount.get("max_discount")
    if max_discount is not None:
        amount = min(amount, Decimal(max_discount))

    return int(min(amount, Decimal(cart_total)))


class DiscountService:
    """Service for seller-scoped promotional codes."""

    TABLE = "discount_codes"

    def __init__(self) -> None:
        """Initialize discount service with Supabase client."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.orders = OrderService()

    async def get_code(self, code: str, seller_id: UUID | str) -> dict[str, Any] | None:
        """Look up a seller's code by its normalized text."""
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("code", normalize_code(code))
            .eq("seller_id", str(seller_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def _get_code_by_id(self, code_id: UUID | str) -> dict[str, Any] | None:
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("id", str(code_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def count_user_redemptions(self, code_id: UUID | str, user_id: UUID | str) -> int:
        """Count the uses of this code a buyer currently holds."""
        response = (
            self.client.table(USAGE_TABLE)
            .select("id", count="exact")
            .eq("discount_code_id", str(code_id))
            .eq("user_id", str(user_id))
            .execute()
        )
        return response.count or 0

    def check_code(self, discount: dict[str, Any], now: datetime) -> DiscountRejection | None:
        """Check the code-level conditions that do not depend on the buyer."""
        if not discount.get("is_active", False):
            return DiscountRejection.INACTIVE

        valid_from = _parse_timestamp(discount.get("valid_from"))
        if valid_from and now < valid_from:
            return DiscountRejection.NOT_YET_ACTIVE

        valid_until = _parse_timestamp(discount.get("valid_until"))
        if valid_until and now > valid_until:
            return DiscountRejection.EXPIRED

        usage_limit = discount.get("usage_limit")
        if usage_limit is not None and discount.get("usage_count", 0) >= usage_limit:
            return DiscountRejection.USAGE_EXCEEDED

        return None

    async def _check_buyer(
        self,
        discount: dict[str, Any],
        user_id: UUID | str,
        cart_total: int,
    ) -> DiscountRejection | None:
        per_user_limit = discount.get("per_user_limit")
        if per_user_limit is not None:
            used = await self.count_user_redemptions(discount["id"], user_id)
            if used >= per_user_limit:
                return DiscountRejection.PER_USER_LIMIT

        if cart_total < (discount.get("minimum_purchase_amount") or 0):
            return DiscountRejection.MINIMUM_NOT_MET

        return None

    async def validate(
        self,
        code: str,
        user_id: UUID,
        seller_id: UUID,
        cart_total: int,
        now: datetime | None = None,
    ) -> DiscountValidation:
        """Check whether a code applies to a buyer's cart.

        Does not consume a use; see redeem.

        Returns:
            DiscountValidation: Valid with the discount amount, or invalid
                with a reason.
        """
        now = now or datetime.now(timezone.utc)
        discount = await self.get_code(code, seller_id)
        if not discount:
            return self._rejected(DiscountRejection.NOT_FOUND)

        rejection = self.check_code(discount, now) or await self._check_buyer(discount, user_id, cart_total)
        if rejection:
            return self._rejected(rejection, discount_code_id=discount["id"])

        return DiscountValidation(
            valid=True,
            discount_amount=compute_discount(discount, cart_total),
            free_shipping=discount["discount_type"] == DiscountType.FREE_SHIPPING.value,
            discount_code_id=discount["id"],
        )

    @staticmethod
    def _rejected(reason: DiscountRejection, discount_code_id: str | None = None) -> DiscountValidation:
        return DiscountValidation(
            valid=False,
            reason=reason,
            message=REJECTION_MESSAGES[reason],
            discount_code_id=discount_code_id,
        )

    async def _consume_use(self, discount: dict[str, Any]) -> dict[str, Any]:
        """Atomically take one use of a code, or raise UsageExceededError."""
        usage_limit = discount.get("usage_limit")
        attempts = max(self.settings.discount_redeem_max_attempts, (usage_limit or 0) + 1)

        current = discount
        for _ in range(attempts):
            count = current.get("usage_count", 0)
            if usage_limit is not None and count >= usage_limit:
                raise UsageExceededError(REJECTION_MESSAGES[DiscountRejection.USAGE_EXCEEDED])

            response = (
                self.client.table(self.TABLE)
                .update({"usage_count": count + 1, "updated_at": utc_now().isoformat()})
                .eq("id", current["id"])
                .eq("usage_count", count)
                .execute()
            )
            if response.data:
                return response.data[0]

            current = await self._get_code_by_id(current["id"])
            if not current:
                raise NotFoundError("Discount code not found")

        raise ConflictError("Discount code is busy, please retry")

    async def _reserve_user_use(self, discount: dict[str, Any], usage: dict[str, Any]) -> dict[str, Any]:
        """Insert the buyer's usage row, taking the lowest free use_index.

        Raises:
            PerUserLimitError: If every index below per_user_limit is taken.
        """
        per_user_limit = discount.get("per_user_limit")
        if per_user_limit is None:
            return self.client.table(USAGE_TABLE).insert(usage).execute().data[0]

        for use_index in range(per_user_limit):
            try:
                response = self.client.table(USAGE_TABLE).insert({**usage, "use_index": use_index}).execute()
            except PostgrestAPIError as e:
                if e.code == UNIQUE_VIOLATION and USER_SLOT_CONSTRAINT in (e.message or ""):
                    continue
                raise
            return response.data[0]

        logger.info("Buyer %s has no uses of code %s left", usage["user_id"], discount["code"])
        raise PerUserLimitError(REJECTION_MESSAGES[DiscountRejection.PER_USER_LIMIT])

    def _drop_usage(self, usage_id: str) -> None:
        self.client.table(USAGE_TABLE).delete().eq("id", usage_id).execute()

    async def _return_use(self, code_id: UUID | str) -> None:
        """Give back a use taken by a redemption that did not complete."""
        for _ in range(self.settings.discount_redeem_max_attempts):
            current = await self._get_code_by_id(code_id)
            if not current or current.get("usage_count", 0) <= 0:
                return
            count = current["usage_count"]
            response = (
                self.client.table(self.TABLE)
                .update({"usage_count": count - 1, "updated_at": utc_now().isoformat()})
                .eq("id", str(code_id))
                .eq("usage_count", count)
                .execute()
            )
            if response.data:
                return
        logger.error("Could not return a use to discount code %s", code_id)

    async def redeem(self, code: str, order_id: UUID, now: datetime | None = None) -> dict[str, Any]:
        """Consume one use of a code and fix the discount into the order.

        The order must not have a payment hold yet; discounts are never
        applied to an authorized amount.

        Args:
            code: Code entered by the buyer.
            order_id: The pending order to discount.
            now: Reference time for the validity window.

        Returns:
            dict: The updated order with discount and totals applied.

        Raises:
            NotFoundError: If the order or code does not exist.
            InvalidStateError: If the order is already held or discounted.
            DiscountError: If the code cannot be applied.
        """
        now = now or datetime.now(timezone.utc)
        order = await self.orders.require_order(order_id)
        if order["payment_hold_status"] != PaymentHoldStatus.NONE.value:
            raise InvalidStateError("Discounts cannot be applied after payment is authorized")
        if order.get("discount_code_id"):
            raise InvalidStateError("A discount code has already been applied to this order")

        discount = await self.get_code(code, order["seller_id"])
        if not discount:
            raise NotFoundError(REJECTION_MESSAGES[DiscountRejection.NOT_FOUND])

        subtotal = order["subtotal_amount"]
        rejection = self.check_code(discount, now) or await self._check_buyer(
            discount, order["buyer_id"], subtotal
        )
        if rejection:
            raise REJECTION_ERRORS[rejection](REJECTION_MESSAGES[rejection])

        amount = compute_discount(discount, subtotal)
        try:
            usage = await self._reserve_user_use(discount, {
                "discount_code_id": discount["id"],
                "order_id": str(order_id),
                "user_id": order["buyer_id"],
                "discount_amount": amount,
                "order_subtotal": subtotal,
            })
        except PostgrestAPIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise InvalidStateError("A discount code has already been applied to this order") from e
            raise

        try:
            await self._consume_use(discount)
        except Exception:
            self._drop_usage(usage["id"])
            raise

        total = subtotal - amount
        updated = await self.orders.conditional_update(
            order_id,
            {
                "discount_code_id": discount["id"],
                "discount_amount": amount,
                "total_amount": total,
                "commission_amount": self.orders.compute_commission(total),
                "updated_at": now.isoformat(),
            },
            {
                "payment_hold_status": [PaymentHoldStatus.NONE.value],
                "discount_code_id": [None],
            },
        )
        if updated is None:
            await self._return_use(discount["id"])
            self._drop_usage(usage["id"])
            raise InvalidStateError("Order changed while applying the discount, please retry")

        logger.info("Redeemed code %s on order %s for %d cents", discount["code"], order_id, amount)
        return updated

    async def release_redemption(self, order: dict[str, Any]) -> None:
        """Return the use consumed by an order that never reached a hold."""
        code_id = order.get("discount_code_id")
        if code_id:
            await self._return_use(code_id)
            self.client.table(USAGE_TABLE).delete().eq("order_id", order["id"]).execute()
            logger.info("Returned discount use for cancelled order %s", order["id"])

    async def create_code(self, seller_id: UUID, data: DiscountCodeCreate) -> dict[str, Any]:
        """Create a new code owned by the seller.

        Raises:
            ValidationError: If the seller already has this code.
        """
        code = normalize_code(data.code)
        if await self.get_code(code, seller_id):
            raise ValidationError("This discount code already exists")

        payload = data.model_dump(mode="json")
        payload.update({
            "code": code,
            "seller_id": str(seller_id),
            "usage_count": 0,
            "is_active": True,
        })
        response = self.client.table(self.TABLE).insert(payload).execute()
        logger.info("Seller %s created discount code %s", seller_id, code)
        return response.data[0]

    async def list_codes(self, seller_id: UUID) -> list[dict[str, Any]]:
        """List a seller's codes, newest first."""
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("seller_id", str(seller_id))
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def deactivate_code(self, code_id: UUID, seller_id: UUID) -> dict[str, Any]:
        """Turn off a code so it can no longer be redeemed.

        Raises:
            NotFoundError: If the code does not exist.
            AuthorizationError: If the seller does not own the code.
        """
        discount = await self._get_code_by_id(code_id)
        if not discount:
            raise NotFoundError("Discount code not found")
        if discount["seller_id"] != str(seller_id):
            raise AuthorizationError("Not authorized to modify this discount code")

        response = (
            self.client.table(self.TABLE)
            .update({"is_active": False, "updated_at": utc_now().isoformat()})
            .eq("id", str(code_id))
            .execute()
        )
        return response.data[0]

    async def get_vendor_stats(self, seller_id: UUID, now: datetime | None = None) -> dict[str, int]:
        """Summarize a seller's codes and the discount they have granted."""
        now = now or datetime.now(timezone.utc)
        codes = await self.list_codes(seller_id)

        stats = {
            "total_codes": len(codes),
            "active_codes": 0,
            "expired_codes": 0,
            "total_uses": 0,
            "total_discount_given": 0,
        }
        for discount in codes:
            valid_until = _parse_timestamp(discount.get("valid_until"))
            expired = valid_until is not None and valid_until < now
            if expired:
                stats["expired_codes"] += 1
            elif discount.get("is_active"):
                stats["active_codes"] += 1
            stats["total_uses"] += discount.get("usage_count", 0)

        code_ids = [discount["id"] for discount in codes]
        if code_ids:
            usage = (
                self.client.table(USAGE_TABLE)
                .select("discount_amount")
                .in_("discount_code_id", code_ids)
                .execute()
            )
            stats["total_discount_given"] = sum(row["discount_amount"] for row in usage.data or [])

        return stats
