"""Payouts domain schemas"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PayoutRequest(BaseModel):
    """Schema for a manual payout of one transaction"""

    model_config = ConfigDict(populate_by_name=True)

    transaction_id: int = Field(..., alias="transactionId")


class ConnectAccountRequest(BaseModel):
    action: str


class PayoutRunResponse(BaseModel):
    success: bool = True
    message: str
    processedCount: int
    successfulCount: int
    totalAmount: float
    failures: list[dict] = []


PayoutMethod = Literal["stripe", "paypal"]
