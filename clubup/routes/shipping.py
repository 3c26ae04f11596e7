"""Shipping quote endpoint used by the product page before checkout"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidInput, UpstreamFailure
from ..providers import get_shipping_service
from ..services.shipping_service import (
    ShippingAddress,
    ShippingDimensions,
    ShippingQuoteRequest,
    ShippingService,
    normalize_postcode,
    validate_postcode,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["Shipping"])


class ShippingCalculateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_postcode: str = Field(..., alias="fromPostcode")
    to_postcode: str = Field(..., alias="toPostcode")
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    weight: float = Field(..., gt=0)
    value: Optional[float] = None
    category: Optional[str] = None


@router.post("/calculate")
async def calculate_shipping(
    body: ShippingCalculateRequest,
    shipping_service: ShippingService = Depends(get_shipping_service),
):
    """Shipping options between two UK postcodes, cheapest first"""
    from_postcode = normalize_postcode(body.from_postcode)
    to_postcode = normalize_postcode(body.to_postcode)
    if not validate_postcode(from_postcode):
        raise InvalidInput("Invalid seller postcode format")
    if not validate_postcode(to_postcode):
        raise InvalidInput("Invalid buyer postcode format")

    result = await shipping_service.calculate_shipping(
        ShippingQuoteRequest(
            from_address=ShippingAddress(postcode=from_postcode),
            to_address=ShippingAddress(postcode=to_postcode),
            dimensions=ShippingDimensions(
                length=body.length, width=body.width, height=body.height, weight=body.weight
            ),
            value=body.value or 0,
            category=body.category or "general",
        )
    )
    if not result.success:
        raise UpstreamFailure(result.error or "Failed to calculate shipping")

    return {
        "success": True,
        "options": [option.to_dict() for option in result.options],
        "fromPostcode": from_postcode,
        "toPostcode": to_postcode,
    }
