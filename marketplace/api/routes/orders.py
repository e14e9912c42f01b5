"""Order placement, fulfillment and escrow settlement routes."""

from uuid import UUID

from fastapi import APIRouter, status

from marketplace.api.deps import CurrentUser
from marketplace.api.middleware.error_handler import NotFoundError
from marketplace.schemas.order import (
    AuthorizeRequest,
    OrderListResponse,
    OrderResponse,
    PlaceOrderRequest,
    ReleaseRequest,
    StatusUpdateRequest,
)
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.escrow_service import EscrowService
from marketplace.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Creates the order, applies an optional discount code and places the escrow hold.",
)
async def place_order(data: PlaceOrderRequest, user: CurrentUser) -> OrderResponse:
    """Place an order as the authenticated buyer.

    Returns:
        OrderResponse: The order with its payment hold authorized.
    """
    order = await CheckoutService().place_order(
        buyer_id=user.user_id,
        seller_id=data.seller_id,
        subtotal_cents=data.subtotal_amount,
        fulfillment_method=data.fulfillment_method,
        payment_method=data.payment_method,
        discount_code=data.discount_code,
    )
    return OrderResponse(**order)


@router.post(
    "/{order_id}/authorize",
    response_model=OrderResponse,
    responses={
        409: {"description": "Order is no longer awaiting its hold"},
        503: {"description": "Payment gateway unavailable, safe to retry"},
    },
    summary="Retry the payment hold",
    description="Repeats the hold for a pending order whose checkout failed transiently.",
)
async def retry_authorization(order_id: UUID, data: AuthorizeRequest, user: CurrentUser) -> OrderResponse:
    order = await CheckoutService().retry_authorization(order_id, user.user_id, data.payment_method)
    return OrderResponse(**order)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
    description="Returns orders where the authenticated user is the buyer or the seller.",
)
async def list_orders(user: CurrentUser) -> OrderListResponse:
    orders = await OrderService().list_orders_for_user(user.user_id)
    return OrderListResponse(items=[OrderResponse(**order) for order in orders])


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    description="Returns a single order. Only the buyer and the seller can see it.",
)
async def get_order(order_id: UUID, user: CurrentUser) -> OrderResponse:
    """Get a single order.

    Orders belonging to other users are reported as not found.
    """
    order = await OrderService().get_order(order_id)
    if not order or str(user.user_id) not in (order["buyer_id"], order["seller_id"]):
        raise NotFoundError("Order not found")
    return OrderResponse(**order)


@router.post(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Record a fulfillment event",
    description="Seller moves the order to confirmed, shipped, ready_for_pickup, delivered or cancelled.",
)
async def update_status(order_id: UUID, data: StatusUpdateRequest, user: CurrentUser) -> OrderResponse:
    order = await OrderService().advance_status(
        order_id=order_id,
        actor_id=user.user_id,
        new_status=data.status,
        tracking_number=data.tracking_number,
        carrier=data.carrier,
        notes=data.notes,
    )
    return OrderResponse(**order)


@router.post(
    "/{order_id}/release",
    response_model=OrderResponse,
    responses={
        403: {"description": "Caller lacks standing for this release reason"},
        409: {"description": "Hold is not authorized, or was already settled"},
        503: {"description": "Payment gateway unavailable, safe to retry"},
    },
    summary="Release the payment hold",
    description="Captures the held payment and completes the order.",
)
async def release_hold(order_id: UUID, data: ReleaseRequest, user: CurrentUser) -> OrderResponse:
    """Capture the escrow hold on behalf of the buyer or seller.

    Sellers release with seller_confirm, buyers with buyer_confirm.

    Returns:
        OrderResponse: The completed order.
    """
    order = await EscrowService().release_hold(order_id, user.user_id, data.reason)
    return OrderResponse(**order)


@router.post(
    "/{order_id}/refund",
    response_model=OrderResponse,
    responses={
        403: {"description": "Caller is neither buyer nor seller"},
        409: {"description": "Hold is not authorized, or was already settled"},
        503: {"description": "Payment gateway unavailable, safe to retry"},
    },
    summary="Refund the payment hold",
    description="Voids the held payment and cancels the order.",
)
async def refund_hold(order_id: UUID, user: CurrentUser) -> OrderResponse:
    order = await EscrowService().refund_hold(order_id, user.user_id)
    return OrderResponse(**order)
