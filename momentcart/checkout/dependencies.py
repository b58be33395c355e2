from fastapi import Depends
from momentcart.checkout.services import CheckoutSessionStateMachine
from momentcart.common.dependencies import get_clock
from momentcart.db.dependencies import get_session_factory


async def get_state_machine(session_factory=Depends(get_session_factory), clock=Depends(get_clock)) -> CheckoutSessionStateMachine:
    return CheckoutSessionStateMachine(session_factory, clock=clock)
