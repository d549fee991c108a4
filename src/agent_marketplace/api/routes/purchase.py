"""Purchase REST API routes.

The purchase flow mirrors the escrow on chain:

    request  -> listing pending, transaction requested
    confirm  -> transaction confirmed (funds held in escrow)
    release  -> transaction completed, listing sold, trade counters bumped

A requested purchase can be cancelled (the listing reopens); a confirmed
one can be disputed.

Routes:
    POST   /purchase/request
    POST   /purchase/confirm
    POST   /purchase/release
    POST   /purchase/cancel
    POST   /purchase/dispute
    GET    /purchase/transactions
    GET    /purchase/transactions/{listing_id}
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from agent_marketplace.api.deps import get_marketplace_service
from agent_marketplace.domain.enums import TransactionStatus
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.common import ADDRESS_PATTERN
from agent_marketplace.schemas.transaction import (
    CancelPurchaseRequest,
    PurchaseRequest,
    PurchaseStepRequest,
    RaiseDisputeRequest,
    TransactionEnvelope,
    TransactionPage,
    TransactionResponse,
)
from agent_marketplace.services.marketplace_service import MarketplaceService

router = APIRouter(prefix="/purchase", tags=["Purchase"])
logger = get_logger(__name__)


def _envelope(transaction, message: str | None = None) -> TransactionEnvelope:  # noqa: ANN001
    return TransactionEnvelope(
        message=message,
        transaction=TransactionResponse.model_validate(transaction),
    )


@router.post(
    "/request",
    response_model=TransactionEnvelope,
    status_code=201,
    summary="Initiate a purchase request",
)
async def request_purchase(
    request: PurchaseRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionEnvelope:
    transaction = await svc.request_purchase(
        listing_id=request.listing_id,
        buyer=request.buyer,
        buyer_agent=request.buyer_agent,
        tx_hash=request.tx_hash,
    )
    return _envelope(
        transaction, "Purchase request created. Waiting for seller confirmation."
    )


@router.post(
    "/confirm",
    response_model=TransactionEnvelope,
    summary="Confirm a purchase",
)
async def confirm_purchase(
    request: PurchaseStepRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionEnvelope:
    transaction = await svc.confirm_purchase(request.listing_id, request.tx_hash)
    return _envelope(transaction, "Purchase confirmed. Funds are in escrow.")


@router.post(
    "/release",
    response_model=TransactionEnvelope,
    summary="Release escrowed funds after delivery",
)
async def release_funds(
    request: PurchaseStepRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionEnvelope:
    transaction = await svc.release_funds(request.listing_id, request.tx_hash)
    return _envelope(transaction, "Funds released successfully. Transaction complete.")


@router.post(
    "/cancel",
    response_model=TransactionEnvelope,
    summary="Cancel a purchase that has not been confirmed",
)
async def cancel_purchase(
    request: CancelPurchaseRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionEnvelope:
    transaction = await svc.cancel_purchase(request.listing_id, reason=request.reason)
    return _envelope(transaction, "Purchase cancelled. Listing is active again.")


@router.post(
    "/dispute",
    response_model=TransactionEnvelope,
    summary="Raise a dispute on a confirmed purchase",
)
async def raise_dispute(
    request: RaiseDisputeRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionEnvelope:
    transaction = await svc.raise_dispute(request.listing_id, reason=request.reason)
    return _envelope(transaction, "Dispute raised. Funds remain in escrow.")


@router.get(
    "/transactions",
    response_model=TransactionPage,
    summary="Transaction history",
)
async def list_transactions(
    status: TransactionStatus | None = Query(default=None),
    seller: str | None = Query(default=None, pattern=ADDRESS_PATTERN.pattern),
    buyer: str | None = Query(default=None, pattern=ADDRESS_PATTERN.pattern),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionPage:
    transactions, pagination = await svc.list_transactions(
        page=page, limit=limit, status=status, seller=seller, buyer=buyer
    )
    return TransactionPage(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        pagination=pagination,
    )


@router.get(
    "/transactions/{listing_id}",
    response_model=TransactionEnvelope,
    summary="Latest transaction for a listing",
)
async def get_listing_transaction(
    listing_id: int,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> TransactionEnvelope:
    transaction = await svc.latest_transaction(listing_id)
    return _envelope(transaction)
