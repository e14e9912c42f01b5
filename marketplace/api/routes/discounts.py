"""Seller discount code routes."""

from uuid import UUID

from fastapi import APIRouter, status

from marketplace.api.deps import CurrentUser
from marketplace.schemas.discount import (
    DiscountCodeCreate,
    DiscountCodeListResponse,
    DiscountCodeResponse,
    DiscountStatsResponse,
    DiscountValidateRequest,
    DiscountValidation,
)
from marketplace.services.discount_service import DiscountService

router = APIRouter(prefix="/discounts", tags=["discounts"])


@router.post(
    "",
    response_model=DiscountCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a discount code",
    description="Creates a code owned by the authenticated seller. Codes are stored upper-cased.",
)
async def create_code(data: DiscountCodeCreate, user: CurrentUser) -> DiscountCodeResponse:
    code = await DiscountService().create_code(user.user_id, data)
    return DiscountCodeResponse(**code)


@router.get(
    "",
    response_model=DiscountCodeListResponse,
    summary="List my discount codes",
)
async def list_codes(user: CurrentUser) -> DiscountCodeListResponse:
    codes = await DiscountService().list_codes(user.user_id)
    return DiscountCodeListResponse(items=[DiscountCodeResponse(**code) for code in codes])


@router.get(
    "/stats",
    response_model=DiscountStatsResponse,
    summary="Discount code statistics",
    description="Counts of the seller's codes, total uses and total discount granted.",
)
async def get_stats(user: CurrentUser) -> DiscountStatsResponse:
    stats = await DiscountService().get_vendor_stats(user.user_id)
    return DiscountStatsResponse(**stats)


@router.post(
    "/{code_id}/deactivate",
    response_model=DiscountCodeResponse,
    summary="Deactivate a discount code",
)
async def deactivate_code(code_id: UUID, user: CurrentUser) -> DiscountCodeResponse:
    code = await DiscountService().deactivate_code(code_id, user.user_id)
    return DiscountCodeResponse(**code)


@router.post(
    "/validate",
    response_model=DiscountValidation,
    summary="Check a discount code against a cart",
    description="Reports whether the code applies and the discount it would give. Does not consume a use.",
)
async def validate_code(data: DiscountValidateRequest, user: CurrentUser) -> DiscountValidation:
    """Validate a code for the authenticated buyer.

    Rejections are returned with valid=false and a reason rather than as
    errors, so the cart can show the message inline.
    """
    return await DiscountService().validate(
        code=data.code,
        user_id=user.user_id,
        seller_id=data.seller_id,
        cart_total=data.cart_total,
    )
