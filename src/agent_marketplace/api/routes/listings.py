"""Listings REST API routes.

Routes:
    POST   /listings        — Record a new listing
    GET    /listings        — Browse and search listings
    GET    /listings/{id}   — Get listing details
    PATCH  /listings/{id}   — Update listing status / buyer
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from agent_marketplace.api.deps import get_marketplace_service
from agent_marketplace.domain.enums import ListingStatus
from agent_marketplace.logging_config import get_logger
from agent_marketplace.schemas.common import ADDRESS_PATTERN
from agent_marketplace.schemas.listing import (
    CreateListingRequest,
    ListingEnvelope,
    ListingPage,
    ListingResponse,
    UpdateListingRequest,
)
from agent_marketplace.services.marketplace_service import ListingFilters, MarketplaceService

router = APIRouter(prefix="/listings", tags=["Listings"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=ListingEnvelope,
    status_code=201,
    summary="Create a new listing",
)
async def create_listing(
    request: CreateListingRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> ListingEnvelope:
    """Record a listing. Fails with 409 if the listing ID is already known."""
    listing = await svc.create_listing(
        listing_id=request.listing_id,
        seller=request.seller,
        seller_agent=request.seller_agent,
        title=request.title,
        description=request.description,
        price=request.price,
        category=request.category,
        tx_hash=request.tx_hash,
        location=request.location,
        images=request.images,
        metadata=request.metadata,
    )
    return ListingEnvelope(listing=ListingResponse.model_validate(listing))


@router.get(
    "",
    response_model=ListingPage,
    summary="Browse and search listings",
)
async def browse_listings(
    status: ListingStatus = Query(default=ListingStatus.ACTIVE),
    category: str | None = Query(default=None),
    min_price: Decimal | None = Query(default=None, alias="minPrice", ge=0),
    max_price: Decimal | None = Query(default=None, alias="maxPrice", ge=0),
    search: str | None = Query(default=None, max_length=200),
    seller: str | None = Query(default=None, pattern=ADDRESS_PATTERN.pattern),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> ListingPage:
    filters = ListingFilters(
        status=status,
        category=category,
        seller=seller,
        min_price=min_price,
        max_price=max_price,
        search=search,
    )
    listings, pagination = await svc.search_listings(filters, page=page, limit=limit)
    return ListingPage(
        listings=[ListingResponse.model_validate(item) for item in listings],
        pagination=pagination,
    )


@router.get(
    "/{listing_id}",
    response_model=ListingEnvelope,
    summary="Get listing details",
)
async def get_listing(
    listing_id: int,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> ListingEnvelope:
    listing = await svc.get_listing(listing_id)
    return ListingEnvelope(listing=ListingResponse.model_validate(listing))


@router.patch(
    "/{listing_id}",
    response_model=ListingEnvelope,
    summary="Update listing status",
)
async def update_listing(
    listing_id: int,
    request: UpdateListingRequest,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> ListingEnvelope:
    """Change status (one legal transition) and/or buyer fields of a listing."""
    listing = await svc.update_listing_status(
        listing_id,
        status=request.status,
        buyer=request.buyer,
        buyer_agent=request.buyer_agent,
    )
    return ListingEnvelope(listing=ListingResponse.model_validate(listing))
