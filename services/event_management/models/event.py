"""Pydantic models for event gating, waitlists and pricing state"""
from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime
from decimal import Decimal


class Notice(BaseModel):
    """Message shown to the user for an outcome"""
    title: str
    description: Optional[str] = None
    variant: Literal["default", "destructive", "warning", "info"] = "default"


GateStatus = Literal["allowed", "pending_approval", "already_requested", "error"]


class GateResult(BaseModel):
    status: GateStatus
    notice: Optional[Notice] = None

    @property
    def allowed(self) -> bool:
        return self.status == "allowed"


class AllowListRequestBody(BaseModel):
    wallet_address: str = Field(..., min_length=1)
    email: str


class WaitlistJoinRequest(BaseModel):
    email: str
    wallet_address: Optional[str] = None


class WaitlistJoinResult(BaseModel):
    status: Literal["joined", "already_joined"]
    email: str
    notice: Notice


class WaitlistCount(BaseModel):
    event_id: str
    count: int


class WaitlistNotifyRequest(BaseModel):
    event_url: Optional[str] = None
    target_title: Optional[str] = None
    target_date: Optional[datetime] = None


class WaitlistNotifyResult(BaseModel):
    notified: int = 0
    failed: int = 0
    notice: Optional[Notice] = None


MismatchType = Literal["none", "price", "currency", "both"]


class LockPricingState(BaseModel):
    on_chain_price: Optional[Decimal] = None
    on_chain_currency: Optional[str] = None
    on_chain_token_address: Optional[str] = None
    has_mismatch: bool = False
    mismatch_type: MismatchType = "none"
    checked: bool = False  # False when the chain was not queried
    error: Optional[str] = None


class PricingSnapshot(BaseModel):
    price: Optional[Decimal] = None
    currency: Optional[str] = None


class PricingSyncResult(BaseModel):
    event_id: str
    previous_pricing: PricingSnapshot
    new_pricing: PricingSnapshot
