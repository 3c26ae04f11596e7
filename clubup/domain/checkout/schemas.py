"""Checkout domain schemas - Pydantic models for validation"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    """Accepts both camelCase (frontend) and snake_case field names"""

    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(CamelModel):
    """Schema for a single-product hosted checkout"""

    product_id: Optional[int] = Field(None, alias="productId")
    buyer_email: Optional[str] = Field(None, alias="buyerEmail")
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")
    shipping_option_id: Optional[str] = Field(None, alias="shippingOptionId")
    buyer_postcode: Optional[str] = Field(None, alias="buyerPostcode")

    @field_validator("buyer_email")
    @classmethod
    def validate_buyer_email(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("buyerEmail must be an email address")
        return v


class CartItem(CamelModel):
    product_id: int = Field(..., alias="productId")
    quantity: int = 1

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("quantity must be at least 1")
        return v


class OrderRequest(CamelModel):
    """Schema for creating a PayPal order (single product or cart)"""

    order_type: Literal["single", "cart"] = Field("single", alias="orderType")
    product_id: Optional[int] = Field(None, alias="productId")
    items: Optional[list[CartItem]] = None
    shipping_option_id: Optional[str] = Field(None, alias="shippingOptionId")
    buyer_postcode: Optional[str] = Field(None, alias="buyerPostcode")


class CommissionSummary(BaseModel):
    rate: float
    amount: float
    sellerReceives: float


class ShippingSummary(BaseModel):
    cost: float
    description: Optional[str] = None


class CheckoutResponse(BaseModel):
    success: bool = True
    sessionId: str
    url: Optional[str] = None
    commission: CommissionSummary
    shipping: ShippingSummary
    total: float


class OrderResponse(BaseModel):
    success: bool = True
    paypalOrderId: str
    approvalUrl: Optional[str] = None
    amount: float
    currency: str
    commission: CommissionSummary
    shipping: ShippingSummary
    total: float


class CaptureResponse(BaseModel):
    success: bool = True
    orderId: str
    captureId: Optional[str] = None
    status: str
    transactionIds: list[int] = []


class CommissionQuoteResponse(BaseModel):
    amount: float
    tier: str
    rate: float
    commissionAmount: float
    sellerReceives: float
