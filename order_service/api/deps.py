"""
Order Service — FastAPI dependencies
"""
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_service.core.security import Principal
from order_service.db.database import get_session_factory
from order_service.db.order_store import OrderStore
from order_service.services.events import EventEmitter
from order_service.services.order_service import OrderService


def get_principal(request: Request) -> Principal:
    """Caller identity attached by JWTAuthMiddleware."""
    principal = getattr(request.state, "user", None)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return principal


def require_roles(*roles: str):
    def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {principal.role} is not allowed to perform this action",
            )
        return principal

    return _check


def get_order_service(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> OrderService:
    state = request.app.state
    return OrderService(OrderStore(session_factory, state.order_locks), EventEmitter(state.hub))
