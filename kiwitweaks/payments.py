# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Payments: Stripe Checkout and webhooks, PayPal orders, purchase fulfilment.

A Stripe delivery moves one way through

    received -> validated -> deduplicated -> persisted -> license_issued -> notified

and stops early in exactly three ways:

* bad signature or unparseable payload: rejected with 400 so Stripe retries
  (a forged or truncated delivery should never be acknowledged)
* failed business checks (no email, unknown product, wrong amount or
  currency, unpaid session): logged as a security event and acknowledged
  with 200, nothing persisted, so Stripe does not retry-storm
* replay of a session that was already fulfilled: stops at `deduplicated`,
  acknowledged, nothing written and no second license or email

`notified` means the license and receipt emails were queued as background
tasks to run after the response is sent. Delivery is best-effort: a failed
send is logged and never changes the stage or the acknowledgement.
"""
import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import stripe
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from .cache import profile_key
from .catalog import Product, get_product, validate_price
from .errors import (
    ConfigurationError,
    NotFoundError,
    UpstreamServiceError,
    ValidationError,
)
from .httpclient import HttpClient, parse_json
from .logs import logger, log_payment, log_security
from .notifications import notify
from .repository import Fulfilment, find_purchase, fulfil_purchase


def configure_stripe(settings) -> None:
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = 2
    if settings.stripe_secret_key:
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.http_timeout)


# ========== WEBHOOK STATE MACHINE ==========

class WebhookStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    DEDUPLICATED = "deduplicated"
    PERSISTED = "persisted"
    LICENSE_ISSUED = "license_issued"
    NOTIFIED = "notified"  # emails queued, not yet delivered


_STAGE_ORDER = list(WebhookStage)


@dataclass
class WebhookOutcome:
    stage: WebhookStage = WebhookStage.RECEIVED
    duplicate: bool = False
    reason: Optional[str] = None
    fulfilment: Optional[Fulfilment] = None

    def advance(self, stage: WebhookStage) -> None:
        if _STAGE_ORDER.index(stage) <= _STAGE_ORDER.index(self.stage):
            raise ValueError(f"Webhook cannot move from {self.stage.value} to {stage.value}")
        self.stage = stage

    def stop(self, reason: str) -> "WebhookOutcome":
        self.reason = reason
        return self

    @property
    def fulfilled(self) -> bool:
        return self.fulfilment is not None and not self.duplicate


def verify_stripe_event(payload: bytes, sig_header: Optional[str], secret: Optional[str]) -> Dict[str, Any]:
    """Check the Stripe-Signature header and decode the event. Raises ValidationError (400)."""
    if not secret:
        logger.error("Stripe webhook secret not configured")
        raise ConfigurationError("Webhook not configured")
    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, sig_header or "", secret)
        event = json.loads(body)
    except (stripe.SignatureVerificationError, UnicodeDecodeError, ValueError) as e:
        log_security("stripe_webhook_verification_failed", severity="high", error=str(e)[:200])
        raise ValidationError("Webhook signature verification failed")
    if not isinstance(event, dict) or not isinstance(event.get("data"), dict):
        log_security("stripe_webhook_malformed", severity="high")
        raise ValidationError("Webhook payload is malformed")
    return event


def _session_email(session: Dict[str, Any]) -> Optional[str]:
    email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
    return email.strip().lower() if isinstance(email, str) and email.strip() else None


def _check_stripe_session(session: Dict[str, Any]) -> Optional[str]:
    """Business checks on a completed checkout session. Returns the failure reason, if any."""
    session_id = session.get("id")
    if not session_id:
        log_security("stripe_session_missing_id", severity="medium")
        return "missing_session_id"

    email = _session_email(session)
    if not email:
        log_security("stripe_session_missing_email", severity="medium", session_id=session_id)
        return "missing_email"

    if session.get("payment_status") != "paid":
        logger.warning("Stripe session %s completed without payment (%s)", session_id, session.get("payment_status"))
        return "not_paid"

    product_id = (session.get("metadata") or {}).get("plan") or "premium"
    try:
        product = get_product(product_id)
    except NotFoundError:
        log_security("stripe_unknown_product", severity="medium", product=product_id, session_id=session_id)
        return "unknown_product"

    amount = session.get("amount_total")
    if not validate_price(product.id, amount, "stripe"):
        log_security("stripe_amount_mismatch", severity="high", expected=product.price_cents,
                     received=amount, session_id=session_id, email=email)
        return "amount_mismatch"

    currency = session.get("currency")
    if not isinstance(currency, str) or currency.lower() != product.stripe_price["currency"]:
        log_security("stripe_currency_mismatch", severity="medium", expected=product.stripe_price["currency"],
                     received=currency, session_id=session_id)
        return "currency_mismatch"
    return None


def process_stripe_event(db: Session, event: Dict[str, Any]) -> WebhookOutcome:
    """Run a verified event through validation, deduplication and persistence."""
    outcome = WebhookOutcome()
    event_type = event.get("type")
    obj = event["data"].get("object") or {}

    if event_type == "payment_intent.succeeded":
        log_payment("payment_intent_succeeded", amount_cents=obj.get("amount"))
        return outcome.stop("informational_event")
    if event_type == "payment_intent.payment_failed":
        error = (obj.get("last_payment_error") or {}).get("message")
        log_payment("payment_intent_failed", amount_cents=obj.get("amount"), error=error)
        return outcome.stop("informational_event")
    if event_type != "checkout.session.completed":
        logger.info("Unhandled Stripe event type: %s", event_type)
        return outcome.stop("unhandled_event")

    failure = _check_stripe_session(obj)
    if failure:
        return outcome.stop(failure)
    outcome.advance(WebhookStage.VALIDATED)

    product = get_product((obj.get("metadata") or {}).get("plan") or "premium")
    fulfilment = fulfil_purchase(
        db,
        email=_session_email(obj),
        product=product,
        amount_cents=obj["amount_total"],
        currency=obj["currency"],
        provider="stripe",
        stripe_session_id=obj["id"],
    )
    outcome.fulfilment = fulfilment
    outcome.advance(WebhookStage.DEDUPLICATED)
    if fulfilment.duplicate:
        outcome.duplicate = True
        logger.warning("Duplicate Stripe webhook received for session %s", obj["id"])
        return outcome.stop("duplicate")

    # Purchase, order and license key were written in one transaction
    outcome.advance(WebhookStage.PERSISTED)
    outcome.advance(WebhookStage.LICENSE_ISSUED)
    return outcome


# ========== SIDE EFFECTS ==========

def send_purchase_emails(mailer, email: str, username: Optional[str], user_id: int, license_key: str,
                         product_name: str, amount_cents: int, currency: str, transaction_id: str, purchased_at) -> None:
    notify(mailer.send_license_key, email, username, license_key, product_name, user_id=user_id)
    notify(mailer.send_purchase_confirmation, email, username, product_name, amount_cents, currency,
           transaction_id, purchased_at)


def after_fulfilment(fulfilment: Fulfilment, *, cache, mailer, analytics, background_tasks: BackgroundTasks,
                     transaction_id: str) -> None:
    """Invalidate the buyer's cached profile, then queue receipt and license emails."""
    user = fulfilment.user
    purchase = fulfilment.purchase
    cache.delete(profile_key(user.id))
    analytics.capture(user.email, "payment_received", {
        "plan": purchase.product_id,
        "amount_cents": purchase.amount_cents,
        "provider": purchase.provider,
    })
    background_tasks.add_task(
        send_purchase_emails, mailer, user.email, user.username, user.id, purchase.license_key,
        purchase.product, purchase.amount_cents, purchase.currency, transaction_id, purchase.created_at,
    )


# ========== STRIPE CHECKOUT ==========

def create_checkout_session(settings, product: Product, email: str, success_url: Optional[str] = None,
                            cancel_url: Optional[str] = None) -> Dict[str, str]:
    if not settings.stripe_secret_key:
        raise ConfigurationError("Stripe is not configured")
    base = settings.app_url.rstrip("/")
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            customer_email=email,
            line_items=[{
                "price_data": {
                    "currency": product.stripe_price["currency"],
                    "unit_amount": product.stripe_price["amount"],
                    "product_data": {"name": product.name, "description": product.description},
                },
                "quantity": 1,
            }],
            metadata={"plan": product.id},
            success_url=success_url or f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{base}/cancel",
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout session creation failed: %s", e)
        raise UpstreamServiceError("Failed to create checkout session") from e
    return {"sessionId": session.id, "url": session.url}


# ========== PAYPAL ==========

@dataclass
class PayPalCapture:
    order_id: str
    status: str
    amount_value: Optional[str]
    currency: Optional[str]
    custom: Dict[str, Any]


class PayPalClient:
    def __init__(self, client_id: Optional[str], client_secret: Optional[str], base_url: str,
                 http: Optional[HttpClient] = None, app_url: str = "https://kiwitweaks.com"):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.app_url = app_url.rstrip("/")
        self.http = http or HttpClient("PayPal")

    @classmethod
    def from_settings(cls, settings) -> "PayPalClient":
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            http=HttpClient("PayPal", timeout=settings.http_timeout, retries=settings.http_retries),
            app_url=settings.app_url,
        )

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("PayPal credentials not configured")
        response = self.http.request(
            "POST", f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            logger.error("PayPal token request failed with status %s", response.status_code)
            raise UpstreamServiceError("PayPal authentication failed")
        token = self._body(response).get("access_token")
        if not token:
            raise UpstreamServiceError("PayPal authentication failed")
        return token

    def _headers(self, **extra: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token()}", "Content-Type": "application/json", **extra}

    def create_order(self, product: Product, email: str) -> str:
        response = self.http.request(
            "POST", f"{self.base_url}/v2/checkout/orders",
            headers=self._headers(Prefer="return=representation"),
            json={
                "intent": "CAPTURE",
                "purchase_units": [{
                    "reference_id": product.id,
                    "description": product.description,
                    "amount": product.paypal_price,
                    "custom_id": json.dumps({"email": email, "plan": product.id}),
                }],
                "application_context": {
                    "brand_name": "KiwiTweaks",
                    "landing_page": "NO_PREFERENCE",
                    "user_action": "PAY_NOW",
                    "return_url": f"{self.app_url}/success",
                    "cancel_url": f"{self.app_url}/cancel",
                },
            },
        )
        if response.status_code not in (200, 201):
            logger.error("PayPal order creation failed with status %s", response.status_code)
            raise UpstreamServiceError("Failed to create PayPal order")
        order_id = self._body(response).get("id")
        if not order_id:
            raise UpstreamServiceError("Failed to create PayPal order")
        return order_id

    def capture_order(self, order_id: str) -> PayPalCapture:
        response = self.http.request(
            "POST", f"{self.base_url}/v2/checkout/orders/{order_id}/capture",
            # Same request id on retries, so PayPal captures at most once
            headers=self._headers(**{"PayPal-Request-Id": f"capture-{order_id}"}),
            json={},
        )
        if response.status_code == 404:
            raise NotFoundError("PayPal order not found")
        if response.status_code not in (200, 201):
            logger.error("PayPal capture of %s failed with status %s", order_id, response.status_code)
            raise UpstreamServiceError("Failed to capture PayPal order")
        return self._parse_capture(order_id, self._body(response))

    @staticmethod
    def _body(response) -> Dict[str, Any]:
        body = parse_json(response, "PayPal")
        if not isinstance(body, dict):
            raise UpstreamServiceError("PayPal returned an invalid response")
        return body

    @staticmethod
    def _parse_capture(order_id: str, body: Dict[str, Any]) -> PayPalCapture:
        unit = (body.get("purchase_units") or [{}])[0]
        captures = (unit.get("payments") or {}).get("captures") or []
        source = captures[0] if captures else unit
        amount = source.get("amount") or unit.get("amount") or {}
        raw_custom = source.get("custom_id") or unit.get("custom_id") or "{}"
        try:
            custom = json.loads(raw_custom)
        except ValueError:
            custom = {}
        return PayPalCapture(
            order_id=body.get("id") or order_id,
            status=body.get("status", ""),
            amount_value=amount.get("value"),
            currency=amount.get("currency_code"),
            custom=custom if isinstance(custom, dict) else {},
        )


def capture_paypal_order(db: Session, paypal: PayPalClient, order_id: str) -> Fulfilment:
    """Capture and fulfil a PayPal order. A replayed order id returns the original purchase."""
    existing = find_purchase(db, paypal_order_id=order_id)
    if existing is not None:
        logger.warning("Duplicate PayPal capture attempt for %s", order_id)
        return Fulfilment(purchase=existing, duplicate=True, user=existing.user)

    capture = paypal.capture_order(order_id)
    if capture.status != "COMPLETED":
        logger.warning("PayPal order %s not completed (%s)", order_id, capture.status)
        raise ValidationError("Payment not completed")

    email = capture.custom.get("email")
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("No email provided in order")
    try:
        product = get_product(capture.custom.get("plan") or "premium")
    except NotFoundError:
        raise ValidationError("Invalid product plan")

    if not validate_price(product.id, capture.amount_value, "paypal"):
        log_security("paypal_amount_mismatch", severity="high", expected=product.paypal_price["value"],
                     received=capture.amount_value, order_id=order_id, email=email)
        raise ValidationError("Payment amount mismatch")
    if capture.currency != product.paypal_price["currency_code"]:
        log_security("paypal_currency_mismatch", severity="medium", expected=product.paypal_price["currency_code"],
                     received=capture.currency, order_id=order_id)
        raise ValidationError("Payment currency mismatch")

    amount_cents = int(Decimal(capture.amount_value) * 100)
    return fulfil_purchase(
        db,
        email=email,
        product=product,
        amount_cents=amount_cents,
        currency=capture.currency,
        provider="paypal",
        paypal_order_id=order_id,
    )
