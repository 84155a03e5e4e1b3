# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from ..catalog import get_product
from ..dependencies import (
    get_analytics,
    get_cache,
    get_db,
    get_mailer,
    get_paypal,
    get_settings,
    rate_limit,
    validated_body,
)
from ..logs import logger
from ..payments import (
    WebhookStage,
    after_fulfilment,
    capture_paypal_order,
    create_checkout_session,
    process_stripe_event,
    verify_stripe_event,
)
from ..schemas import CheckoutRequest, PayPalCaptureRequest, PayPalCreateRequest
from . import success

# Buyer-facing endpoints: behind the general API limiter (applied at include time)
router = APIRouter(prefix="/payment", tags=["payment"])

# Provider callbacks: authenticated by signature, never rate limited
webhook_router = APIRouter(prefix="/payment", tags=["payment"])


@router.post("/stripe-checkout", dependencies=[Depends(rate_limit("payment"))])
async def stripe_checkout(
    body: CheckoutRequest = Depends(validated_body(CheckoutRequest)),
    settings=Depends(get_settings),
):
    """Create a Stripe Checkout session for a catalog product"""
    product = get_product(body.plan)
    session = create_checkout_session(settings, product, body.email, body.success_url, body.cancel_url)
    logger.info("Stripe checkout session %s created for %s (%s)", session["sessionId"], body.email, product.id)
    return success(session)


@webhook_router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    cache=Depends(get_cache),
    mailer=Depends(get_mailer),
    analytics=Depends(get_analytics),
):
    """Handle Stripe webhook events"""
    payload = await request.body()
    event = verify_stripe_event(payload, request.headers.get("stripe-signature"), settings.stripe_webhook_secret)

    outcome = process_stripe_event(db, event)
    if outcome.fulfilled:
        after_fulfilment(
            outcome.fulfilment,
            cache=cache,
            mailer=mailer,
            analytics=analytics,
            background_tasks=background_tasks,
            transaction_id=outcome.fulfilment.purchase.stripe_session_id,
        )
        outcome.advance(WebhookStage.NOTIFIED)

    logger.info("Stripe event %s (%s) stopped at %s%s", event.get("id"), event.get("type"), outcome.stage.value,
                f" ({outcome.reason})" if outcome.reason else "")
    return success({
        "received": True,
        "stage": outcome.stage.value,
        "duplicate": outcome.duplicate,
    })


@router.post("/paypal-create", dependencies=[Depends(rate_limit("payment"))])
async def paypal_create(
    body: PayPalCreateRequest = Depends(validated_body(PayPalCreateRequest)),
    paypal=Depends(get_paypal),
):
    """Create a PayPal order for a catalog product"""
    product = get_product(body.plan)
    order_id = paypal.create_order(product, body.email)
    logger.info("PayPal order %s created for %s (%s)", order_id, body.email, product.id)
    return success({"orderId": order_id})


@router.post("/paypal-capture", dependencies=[Depends(rate_limit("payment"))])
async def paypal_capture(
    background_tasks: BackgroundTasks,
    body: PayPalCaptureRequest = Depends(validated_body(PayPalCaptureRequest)),
    db: Session = Depends(get_db),
    paypal=Depends(get_paypal),
    cache=Depends(get_cache),
    mailer=Depends(get_mailer),
    analytics=Depends(get_analytics),
):
    """Capture an approved PayPal order and issue the license"""
    fulfilment = capture_paypal_order(db, paypal, body.order_id)
    if fulfilment.duplicate:
        return success({
            "orderId": body.order_id,
            "licenseKey": fulfilment.license_key,
            "duplicate": True,
        }, "Order already processed")

    after_fulfilment(
        fulfilment,
        cache=cache,
        mailer=mailer,
        analytics=analytics,
        background_tasks=background_tasks,
        transaction_id=body.order_id,
    )
    return success({
        "orderId": body.order_id,
        "licenseKey": fulfilment.license_key,
        "orderNumber": fulfilment.order.order_id,
        "duplicate": False,
    }, "Payment completed successfully")
