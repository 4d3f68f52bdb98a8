"""Pydantic models for ticket purchases and fiat payment tracking"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from dataclasses import dataclass
from services.event_management.models.event import Notice


@dataclass
class Buyer:
    """Who is buying: contact email, receiving wallet and their Privy session"""
    email: Optional[str]
    wallet_address: Optional[str]
    access_token: Optional[str] = None
    user_id: Optional[str] = None


class PurchaseRequest(BaseModel):
    email: str
    wallet_address: Optional[str] = None
    payment_method: Optional[Literal["free", "crypto", "fiat"]] = None


class ConfirmPurchaseRequest(BaseModel):
    email: str
    wallet_address: str
    tx_hash: str = Field(..., min_length=10)


class CheckoutSession(BaseModel):
    reference: str
    authorization_url: str
    access_code: Optional[str] = None


PurchaseStatus = Literal[
    "success",
    "already_claimed",
    "recovered",
    "failed",
    "validation_failed",
    "registration_closed",
    "pending_approval",
    "already_requested",
    "checkout_started",
    "wallet_signature_required",
]


class PurchaseOutcome(BaseModel):
    status: PurchaseStatus
    notices: List[Notice] = []
    transaction_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    warnings: List[str] = []
    error_code: Optional[str] = None
    gasless: bool = False
    remaining_gasless_today: Optional[int] = None
    checkout: Optional[CheckoutSession] = None
    unsigned_transaction: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("success", "already_claimed", "recovered")


class GatewayStatus(BaseModel):
    key_granted: bool = False
    tx_hash: Optional[str] = None


class TransactionStatusResponse(BaseModel):
    """Payment status as the reconciliation poller sees it"""
    found: bool
    status: Optional[str] = None
    key_granted: bool = False
    gateway_response: Optional[GatewayStatus] = None
    issuance_last_error: Optional[str] = None


ProcessingState = Literal["processing", "success", "error", "timeout"]


class ProcessingResult(BaseModel):
    state: ProcessingState
    message: str
    transaction_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    attempts: int = 0


class AwaitIssuanceRequest(BaseModel):
    chain_id: Optional[int] = None


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
    reference: Optional[str] = None
    queued: bool = False
