# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import repository
from ..cache import profile_key
from ..catalog import get_product
from ..dependencies import get_cache, get_db, require_auth, validated_body
from ..errors import NotFoundError
from ..logs import log_payment
from ..schemas import CreateOrderRequest
from . import success

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def list_orders(claims: dict = Depends(require_auth), db: Session = Depends(get_db)):
    """Orders of the signed-in user, newest first"""
    orders = repository.list_orders(db, claims["userId"])
    return success({"orders": [repository.order_to_dict(o) for o in orders]})


@router.post("", status_code=201)
async def create_order(
    body: CreateOrderRequest = Depends(validated_body(CreateOrderRequest)),
    claims: dict = Depends(require_auth),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Record an order for a catalog product with a license key"""
    user = repository.get_user(db, claims["userId"])
    if user is None:
        raise NotFoundError("User not found")

    product = get_product(body.product_id)
    order = repository.create_order(db, user, product, body.license_key)
    cache.delete(profile_key(user.id))
    log_payment("order_created", user_id=user.id, amount_cents=order.amount_cents, order_id=order.order_id)

    data = repository.order_to_dict(order)
    return success({
        "order": data,
        "accountInfo": {
            "createdDate": data["accountCreatedDate"],
            "lastLogin": data["lastLoginDate"],
            "accountDays": order.account_days,
        },
    }, "Order created successfully")
