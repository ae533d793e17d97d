"""
Order Service: Route dependencies
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.security import Actor
from canteen.db.database import get_db
from canteen.db.order_store import OrderStore
from canteen.services.lifecycle import OrderLifecycle


def get_actor(request: Request) -> Actor:
    return request.state.actor


def get_store(db: AsyncSession = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_lifecycle(request: Request, store: OrderStore = Depends(get_store)) -> OrderLifecycle:
    return OrderLifecycle(store, request.app.state.notifier)
