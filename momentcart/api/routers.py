from fastapi import APIRouter
from momentcart.api import version_prefix
from momentcart.checkout.routes import checkout_router
from momentcart.common.routes import home_router
from momentcart.links.routes import links_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(links_router, tags=["links"])
public_routers.include_router(checkout_router, prefix="/checkout", tags=["checkout"])
public_routers.include_router(home_router, tags=["home"])
