# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Persistence helpers used by the route handlers.

Anything that must happen at most once (spending a reset token, verifying an
email, fulfilling a payment) is decided by the database: a conditional UPDATE
whose rowcount is checked, or a unique constraint. The read that comes first
is only a fast path.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .catalog import Product
from .database import as_utc, utcnow
from .errors import ConflictError
from .logs import logger, log_payment
from .models import AuthLog, Order, Purchase, User
from .security import generate_license_key

AUTH_LOG_RETENTION_DAYS = 90


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def account_days(user: User, now: Optional[datetime] = None) -> int:
    created = as_utc(user.created_at)
    if created is None:
        return 0
    return max(0, ((now or utcnow()) - created).days)


# ========== USERS ==========

def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def create_user(db: Session, email: str, password_hash: str, username: Optional[str] = None,
                verification_token: Optional[str] = None) -> User:
    """Insert a registered account. Raises ConflictError if the email or username is taken."""
    email = email.strip().lower()
    if get_user_by_email(db, email):
        raise ConflictError("An account with this email already exists")
    if username and db.query(User.id).filter(User.username == username).first():
        raise ConflictError("This username is already taken")

    now = utcnow()
    user = User(
        email=email,
        username=username,
        password=password_hash,
        verification_token=verification_token,
        verification_token_sent_at=now if verification_token else None,
        email_verified=False,
        created_at=now,
        last_login=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent signup for the same email or username
        db.rollback()
        raise ConflictError("An account with this email already exists")
    return user


def record_login(db: Session, user: User) -> None:
    user.last_login = utcnow()
    db.commit()


def store_reset_token(db: Session, user: User, token_hash: str, ttl: timedelta) -> None:
    now = utcnow()
    user.reset_token = token_hash
    user.reset_token_expires_at = now + ttl
    user.reset_requested_at = now
    db.commit()


def consume_reset_token(db: Session, token_hash: str, new_password_hash: str) -> Optional[User]:
    """Set the new password if the token is live. The token works exactly once."""
    now = utcnow()
    user = db.query(User).filter(User.reset_token == token_hash).first()
    if user is None:
        return None
    result = db.execute(
        update(User)
        .where(User.id == user.id, User.reset_token == token_hash, User.reset_token_expires_at > now)
        .values(password=new_password_hash, reset_token=None, reset_token_expires_at=None, password_changed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None
    db.refresh(user)
    return user


def store_verification_token(db: Session, user: User, token_hash: str) -> None:
    user.verification_token = token_hash
    user.verification_token_sent_at = utcnow()
    db.commit()


def consume_verification_token(db: Session, token_hash: str, ttl: timedelta) -> Optional[User]:
    """Mark the account verified if the token was issued less than `ttl` ago."""
    now = utcnow()
    user = db.query(User).filter(User.verification_token == token_hash).first()
    if user is None:
        return None
    result = db.execute(
        update(User)
        .where(
            User.id == user.id,
            User.verification_token == token_hash,
            User.verification_token_sent_at > now - ttl,
        )
        .values(email_verified=True, email_verified_at=now, verification_token=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None
    db.refresh(user)
    return user


def set_password(db: Session, user: User, password_hash: str) -> None:
    user.password = password_hash
    user.password_changed_at = utcnow()
    user.reset_token = None
    user.reset_token_expires_at = None
    db.commit()


def bind_hwid(db: Session, user_id: int, license_key: str, hwid: str) -> bool:
    """Bind a hardware id to one of the caller's own licenses. False if the key is not theirs."""
    if not user_owns_license(db, user_id, license_key):
        return False
    now = utcnow()
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(license_key=license_key, hwid=hwid, hwid_updated_at=now, last_verified_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return True


def user_owns_license(db: Session, user_id: int, license_key: str) -> bool:
    if db.query(User.id).filter(User.id == user_id, User.license_key == license_key).first():
        return True
    return db.query(Purchase.id).filter(Purchase.user_id == user_id, Purchase.license_key == license_key).first() is not None


# ========== AUDIT LOG ==========

def record_auth_event(db: Session, event: str, user_id: Optional[int] = None, email: Optional[str] = None,
                      ip: Optional[str] = None) -> None:
    db.add(AuthLog(event=event, user_id=user_id, email=email, ip=ip))
    db.commit()


def prune_auth_logs(db: Session, retention_days: int = AUTH_LOG_RETENTION_DAYS) -> int:
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.query(AuthLog).filter(AuthLog.created_at < cutoff).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info("Pruned %d auth log rows older than %d days", deleted, retention_days)
    return deleted


# ========== ORDERS & PURCHASES ==========

def _order_snapshot(user: User, product: Product, amount_cents: int, currency: str, license_key: Optional[str],
                    payment_method: str) -> Order:
    return Order(
        user_id=user.id,
        user_email=user.email,
        username=user.username or user.email.split("@")[0],
        account_created_at=user.created_at,
        last_login_at=user.last_login,
        account_days=account_days(user),
        product_id=product.id,
        product_name=product.name,
        amount_cents=amount_cents,
        currency=currency.upper(),
        license_key=license_key,
        status="completed",
        payment_method=payment_method,
        created_at=utcnow(),
    )


def _assign_order_id(order: Order) -> None:
    order.order_id = f"KWT-{as_utc(order.created_at).year}-{order.id:06d}"


def create_order(db: Session, user: User, product: Product, license_key: Optional[str] = None) -> Order:
    """Order placed by a signed-in user. Price comes from the catalog, never the client."""
    license_key = license_key or generate_license_key()
    order = _order_snapshot(user, product, product.price_cents, product.currency, license_key, "manual")
    db.add(order)
    db.flush()
    _assign_order_id(order)

    db.add(Purchase(
        user_id=user.id,
        product_id=product.id,
        product=product.name,
        license_key=license_key,
        amount_cents=product.price_cents,
        currency=product.currency,
        status="completed",
        provider="manual",
        order_id=order.order_id,
        created_at=order.created_at,
    ))
    if not user.license_key:
        user.license_key = license_key
    db.commit()
    return order


def list_orders(db: Session, user_id: int) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def find_purchase(db: Session, stripe_session_id: Optional[str] = None,
                  paypal_order_id: Optional[str] = None) -> Optional[Purchase]:
    query = db.query(Purchase)
    if stripe_session_id:
        return query.filter(Purchase.stripe_session_id == stripe_session_id).first()
    if paypal_order_id:
        return query.filter(Purchase.paypal_order_id == paypal_order_id).first()
    return None


@dataclass
class Fulfilment:
    purchase: Purchase
    duplicate: bool
    user: Optional[User] = None
    order: Optional[Order] = None

    @property
    def license_key(self) -> Optional[str]:
        return self.purchase.license_key


def _fulfil_once(db: Session, email: str, product: Product, amount_cents: int, currency: str, provider: str,
                 stripe_session_id: Optional[str], paypal_order_id: Optional[str]) -> Fulfilment:
    user = get_user_by_email(db, email)
    if user is None:
        # First contact with this buyer: the account has no password until they register or reset
        user = User(email=email, email_verified=False, created_at=utcnow())
        db.add(user)
        db.flush()

    license_key = generate_license_key()
    order = _order_snapshot(user, product, amount_cents, currency, license_key, provider)
    db.add(order)
    db.flush()
    _assign_order_id(order)

    purchase = Purchase(
        user_id=user.id,
        product_id=product.id,
        product=product.name,
        license_key=license_key,
        amount_cents=amount_cents,
        currency=currency.upper(),
        status="completed",
        provider=provider,
        stripe_session_id=stripe_session_id,
        paypal_order_id=paypal_order_id,
        order_id=order.order_id,
        created_at=order.created_at,
    )
    db.add(purchase)
    user.license_key = license_key
    user.is_premium = True
    db.commit()
    return Fulfilment(purchase=purchase, duplicate=False, user=user, order=order)


def fulfil_purchase(db: Session, *, email: str, product: Product, amount_cents: int, currency: str, provider: str,
                    stripe_session_id: Optional[str] = None, paypal_order_id: Optional[str] = None) -> Fulfilment:
    """
    Record a paid purchase exactly once per provider correlation id.

    Upserts the buyer by email and writes the purchase, its order and a fresh
    license key in one transaction. A replay returns the existing purchase
    with duplicate=True and writes nothing.
    """
    email = email.strip().lower()
    for attempt in range(2):
        existing = find_purchase(db, stripe_session_id=stripe_session_id, paypal_order_id=paypal_order_id)
        if existing is not None:
            logger.warning("Duplicate %s fulfilment ignored (session=%s order=%s)",
                           provider, stripe_session_id, paypal_order_id)
            return Fulfilment(purchase=existing, duplicate=True, user=existing.user)
        try:
            result = _fulfil_once(db, email, product, amount_cents, currency, provider,
                                  stripe_session_id, paypal_order_id)
        except IntegrityError as e:
            # A concurrent delivery got there first (purchase id or buyer email)
            db.rollback()
            logger.warning("Fulfilment attempt %d hit a unique constraint: %s", attempt + 1, e.orig)
            continue
        log_payment("purchase_completed", user_id=result.user.id, amount_cents=amount_cents,
                    product=product.id, provider=provider, order_id=result.order.order_id)
        return result

    existing = find_purchase(db, stripe_session_id=stripe_session_id, paypal_order_id=paypal_order_id)
    if existing is not None:
        return Fulfilment(purchase=existing, duplicate=True, user=existing.user)
    raise ConflictError("Purchase could not be recorded")


# ========== SERIALIZATION ==========

def order_to_dict(order: Order) -> dict:
    return {
        "orderId": order.order_id,
        "productId": order.product_id,
        "productName": order.product_name,
        "amountCents": order.amount_cents,
        "amount": f"{order.amount_cents / 100:.2f}",
        "currency": order.currency,
        "licenseKey": order.license_key,
        "status": order.status,
        "paymentMethod": order.payment_method,
        "orderDate": _iso(order.created_at),
        "accountCreatedDate": _iso(order.account_created_at),
        "lastLoginDate": _iso(order.last_login_at),
        "accountDays": order.account_days,
    }


def purchase_to_dict(purchase: Purchase) -> dict:
    return {
        "product": purchase.product,
        "productId": purchase.product_id,
        "licenseKey": purchase.license_key,
        "amountCents": purchase.amount_cents,
        "currency": purchase.currency,
        "status": purchase.status,
        "provider": purchase.provider,
        "orderId": purchase.order_id,
        "date": _iso(purchase.created_at),
    }


def build_profile(db: Session, user_id: int) -> Optional[dict]:
    """Sanitized profile: never the password hash or any token."""
    user = get_user(db, user_id)
    if user is None:
        return None
    purchases = [purchase_to_dict(p) for p in user.purchases]
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "emailVerified": bool(user.email_verified),
        "isPremium": bool(user.is_premium),
        "licenseKey": user.license_key,
        "hwidBound": user.hwid is not None,
        "createdAt": _iso(user.created_at),
        "lastLogin": _iso(user.last_login),
        "purchases": purchases,
        "stats": {
            "purchaseCount": len(purchases),
            "accountAge": account_days(user),
        },
    }
