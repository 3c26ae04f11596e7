"""Escrow domain schemas"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class EscrowActionRequest(BaseModel):
    """Schema for POST /escrow; the action is checked by the service"""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    transaction_id: int = Field(..., alias="transactionId")
    tracking_number: Optional[str] = Field(None, alias="trackingNumber")
    carrier: Optional[str] = None
    satisfied: bool = True
    dispute_reason: Optional[str] = Field(None, alias="disputeReason")


EscrowRole = Literal["buyer", "seller"]
