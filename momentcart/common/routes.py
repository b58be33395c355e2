from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from momentcart.common.errors import StoreUnavailable
from momentcart.common.retries import is_recoverable_exception
from momentcart.common.utils import success_response
from momentcart.common.constants import request_id_ctx
from momentcart.db.dependencies import get_session

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        if is_recoverable_exception(exc):
            raise StoreUnavailable() from exc
        raise

    return success_response({"status": "healthy"}, request_id=request_id_ctx.get())
