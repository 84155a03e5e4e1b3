# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(254), unique=True, index=True, nullable=False)  # always lowercased
    username = Column(String(30), unique=True, nullable=True)
    password = Column(String, nullable=True)  # bcrypt hash; NULL for accounts created by a payment

    # Recovery tokens: sha256 of the value that was emailed, never the raw token
    reset_token = Column(String(64), nullable=True, index=True)
    reset_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    reset_requested_at = Column(DateTime(timezone=True), nullable=True)
    password_changed_at = Column(DateTime(timezone=True), nullable=True)

    verification_token = Column(String(64), nullable=True, index=True)
    verification_token_sent_at = Column(DateTime(timezone=True), nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Licensing
    license_key = Column(String(64), nullable=True, index=True)
    hwid = Column(String(256), nullable=True)
    hwid_updated_at = Column(DateTime(timezone=True), nullable=True)
    last_verified_at = Column(DateTime(timezone=True), nullable=True)
    is_premium = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    last_login = Column(DateTime(timezone=True), nullable=True)

    purchases = relationship("Purchase", back_populates="user", order_by="Purchase.id")

    __table_args__ = (Index("ix_users_created_at_desc", created_at.desc()),)


class Purchase(Base):
    """Append-only purchase history, one row per fulfilled payment."""
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String(32), nullable=False)
    product = Column(String(128), nullable=False)
    license_key = Column(String(64), nullable=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(16), nullable=False, default="completed")
    provider = Column(String(16), nullable=False)  # stripe, paypal or manual

    # Provider correlation ids: the unique constraints are the idempotency guard
    stripe_session_id = Column(String(255), unique=True, nullable=True)
    paypal_order_id = Column(String(255), unique=True, nullable=True)

    order_id = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    user = relationship("User", back_populates="purchases")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_id = Column(String(32), unique=True, nullable=True)  # KWT-<year>-<id>, set after insert

    # Snapshot of the account at order time
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    user_email = Column(String(254), nullable=False)
    username = Column(String(64), nullable=True)
    account_created_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    account_days = Column(Integer, nullable=False, default=0)

    product_id = Column(String(32), nullable=False)
    product_name = Column(String(128), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    license_key = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default="completed")
    payment_method = Column(String(16), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("ix_orders_created_at_desc", created_at.desc()),)


class AuthLog(Base):
    """Audit trail for authentication events, pruned after 90 days."""
    __tablename__ = "auth_logs"

    id = Column(Integer, primary_key=True)
    event = Column(String(64), nullable=False)
    user_id = Column(Integer, nullable=True)
    email = Column(String(254), nullable=True)
    ip = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
