import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from keeva.domain.schemas import (
    Actor,
    CancelBody,
    OrderCreateBody,
    PaymentVerifyBody,
    StatusUpdateBody,
    parse_order_reference,
)
from keeva.interfaces.auth import get_actor

router = APIRouter(prefix="/orders")
logger = logging.getLogger(__name__)

# Handlers stay thin: services come from app.state (wired in main.py),
# errors propagate to the KeevaError handler.


@router.post("/create", status_code=201)
def create_order(body: OrderCreateBody, request: Request, actor: Actor = Depends(get_actor)):
    logger.info(f"📨 Create order from user {actor.user_id}")
    order = request.app.state.checkout.create_cod_order(actor.user_id, body)
    return {"ok": True, "message": "Order created successfully", "order": order.to_dict()}


@router.get("/list")
def list_orders(
    request: Request,
    actor: Actor = Depends(get_actor),
    socket_id: Optional[str] = Query(default=None, alias="socketId"),
    x_socket_id: Optional[str] = Header(default=None),
):
    orders = [order.to_dict() for order in request.app.state.lifecycle.list_orders(actor)]

    connection_id = socket_id or x_socket_id
    if connection_id:
        request.app.state.notifier.send_snapshot(connection_id, actor.user_id, actor.role, orders)

    return {"ok": True, "orders": orders}


@router.post("/payment/create", status_code=201)
def create_payment_order(body: OrderCreateBody, request: Request, actor: Actor = Depends(get_actor)):
    logger.info(f"📨 Create payment order from user {actor.user_id}")
    checkout = request.app.state.checkout
    order, gateway_order = checkout.create_online_order(actor.user_id, body)
    return {
        "ok": True,
        "message": "Payment order created successfully",
        "order": order.to_dict(),
        "gatewayOrder": gateway_order.to_dict(),
        "gatewayKeyId": checkout.gateway.key_id,
    }


@router.post("/payment/verify")
def verify_payment(body: PaymentVerifyBody, request: Request, actor: Actor = Depends(get_actor)):
    order, already = request.app.state.checkout.verify_payment(
        actor.user_id,
        body.gateway_order_id,
        body.gateway_payment_id,
        body.signature,
    )
    message = "Payment already verified" if already else "Payment verified successfully"
    return {"ok": True, "message": message, "order": order.to_dict()}


@router.get("/{order_id}")
def get_order(order_id: str, request: Request, actor: Actor = Depends(get_actor)):
    order = request.app.state.lifecycle.get_order(parse_order_reference(order_id), actor)
    return {"ok": True, "order": order.to_dict()}


@router.put("/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdateBody, request: Request,
                        actor: Actor = Depends(get_actor)):
    order = request.app.state.lifecycle.set_status(parse_order_reference(order_id), body.status, actor)
    return {"ok": True, "message": "Order status updated successfully", "order": order.to_dict()}


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, body: CancelBody, request: Request, actor: Actor = Depends(get_actor)):
    order = request.app.state.lifecycle.cancel(parse_order_reference(order_id), actor, body.reason)
    return {"ok": True, "message": "Order cancelled successfully", "order": order.to_dict()}
