"""SQLAlchemy models matching the Supabase schema"""
from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, DateTime, Date, ForeignKey, Numeric, Text,
    UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import UUID, JSONB, ARRAY
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    creator_id = Column(String, nullable=False)  # Privy user id of the organizer
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=True)  # legacy day-only date
    time = Column(String, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    registration_cutoff = Column(DateTime(timezone=True), nullable=True)
    location = Column(String, nullable=True)
    capacity = Column(Integer, nullable=False, server_default="0")
    lock_address = Column(String, nullable=False, index=True)  # immutable once deployed
    chain_id = Column(Integer, nullable=False)
    price = Column(Numeric(36, 18), nullable=False, server_default="0")
    currency = Column(String, nullable=False, server_default="FREE")  # FREE, ETH, USDC, DG, G, UP, NGN
    ngn_price = Column(Numeric(12, 2), nullable=True)
    payment_methods = Column(ARRAY(String), nullable=False, server_default="{}")  # free | crypto | fiat
    paystack_public_key = Column(String, nullable=True)
    has_allow_list = Column(Boolean, nullable=False, server_default="false")
    allow_waitlist = Column(Boolean, nullable=False, server_default="false")
    transferable = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    tickets = relationship("Ticket", back_populates="event")
    allow_list = relationship("AllowListEntry", back_populates="event", cascade="all, delete-orphan")
    allow_list_requests = relationship("AllowListRequest", back_populates="event", cascade="all, delete-orphan")
    waitlist = relationship("WaitlistEntry", back_populates="event", cascade="all, delete-orphan")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    owner_wallet = Column(String, nullable=False, index=True)  # always lower-case
    grant_tx_hash = Column(String, nullable=True)  # null for recovered records
    status = Column(String, nullable=False, server_default="active")  # active, revoked, expired
    user_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    event = relationship("Event", back_populates="tickets")


class PaystackTransaction(Base):
    __tablename__ = "paystack_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference = Column(String, unique=True, nullable=False, index=True)  # idempotency key
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    user_email = Column(String, nullable=False)
    amount = Column(BigInteger, nullable=True)  # kobo
    currency = Column(String, nullable=False, server_default="NGN")
    status = Column(String, nullable=False, server_default="pending")  # pending, success, failed, abandoned
    # Webhook payload plus issuance fields: key_granted, tx_hash, key_granted_at
    gateway_response = Column(JSONB, nullable=True)
    issuance_last_error = Column(String, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    event = relationship("Event")


class AllowListEntry(Base):
    __tablename__ = "event_allow_list"
    __table_args__ = (
        UniqueConstraint("event_id", "wallet_address", name="uq_allow_list_event_wallet"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    wallet_address = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    event = relationship("Event", back_populates="allow_list")


class AllowListRequest(Base):
    __tablename__ = "event_allow_list_requests"
    __table_args__ = (
        UniqueConstraint("event_id", "wallet_address", name="uq_allow_list_requests_event_wallet"),
        Index("idx_event_allow_list_requests_event_status", "event_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    wallet_address = Column(String, nullable=False)
    user_email = Column(String, nullable=False)
    status = Column(String, nullable=False, server_default="pending")  # pending, approved, rejected
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    event = relationship("Event", back_populates="allow_list_requests")


class WaitlistEntry(Base):
    __tablename__ = "event_waitlist"
    __table_args__ = (
        UniqueConstraint("event_id", "user_email", name="uq_event_waitlist_event_email"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    user_email = Column(String, nullable=False, index=True)  # normalized
    wallet_address = Column(String, nullable=True)
    notified = Column(Boolean, nullable=False, server_default="false")
    notified_at = Column(DateTime(timezone=True), nullable=True)
    confirmation_sent = Column(Boolean, nullable=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    event = relationship("Event", back_populates="waitlist")


class NetworkConfig(Base):
    __tablename__ = "network_configs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chain_id = Column(Integer, unique=True, nullable=False)
    chain_name = Column(String, nullable=False)
    native_currency_symbol = Column(String, nullable=False, server_default="ETH")
    native_currency_decimals = Column(Integer, nullable=True)
    rpc_url = Column(String, nullable=True)
    block_explorer_url = Column(String, nullable=True)
    usdc_token_address = Column(String, nullable=True)
    dg_token_address = Column(String, nullable=True)
    g_token_address = Column(String, nullable=True)
    up_token_address = Column(String, nullable=True)
    is_mainnet = Column(Boolean, nullable=False, server_default="false")
    is_active = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
