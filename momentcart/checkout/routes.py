from uuid import UUID
from fastapi import APIRouter, Depends, Header, Request, status
from momentcart.checkout.dependencies import get_state_machine
from momentcart.checkout.models import CancelCheckoutInput, ConfirmCheckoutInput, StartCheckoutInput
from momentcart.checkout.services import CartItem, CheckoutSessionStateMachine, checkout_to_dict
from momentcart.common.constants import request_id_ctx
from momentcart.common.utils import success_response

checkout_router = APIRouter()


@checkout_router.post("/start")
async def start_checkout(
    request: Request,
    body: StartCheckoutInput,
    idempotency_key: str = Header(alias="Idempotency-Key", min_length=8, max_length=255),
    machine: CheckoutSessionStateMachine = Depends(get_state_machine),
):
    checkout, created = await machine.start(
        body.creator_id,
        idempotency_key,
        body.short_link_code,
        [CartItem(variant_id=it.variant_id, quantity=it.quantity) for it in body.items],
        visitor_id=body.visitor_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    # a replayed key answers 200 with the original session
    status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return success_response(checkout_to_dict(checkout), status_code=status_code, request_id=request_id_ctx.get())


@checkout_router.get("/{checkout_id}")
async def get_checkout(checkout_id: UUID, machine: CheckoutSessionStateMachine = Depends(get_state_machine)):
    checkout = await machine.get(checkout_id)
    return success_response(checkout_to_dict(checkout), request_id=request_id_ctx.get())


@checkout_router.post("/{checkout_id}/confirm")
async def confirm_checkout(
    checkout_id: UUID,
    body: ConfirmCheckoutInput,
    machine: CheckoutSessionStateMachine = Depends(get_state_machine),
):
    checkout = await machine.confirm(checkout_id, body.external_order_ref)
    return success_response(checkout_to_dict(checkout), request_id=request_id_ctx.get())


@checkout_router.post("/{checkout_id}/cancel")
async def cancel_checkout(
    checkout_id: UUID,
    body: CancelCheckoutInput,
    machine: CheckoutSessionStateMachine = Depends(get_state_machine),
):
    checkout = await machine.cancel(checkout_id, body.reason)
    return success_response(checkout_to_dict(checkout), request_id=request_id_ctx.get())
