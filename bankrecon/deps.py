"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from bankrecon.deps import AdapterFactoryDep, DbSession

    async def my_endpoint(db: DbSession, adapter_factory: AdapterFactoryDep):
        ...
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.database import get_db
from bankrecon.services.bank_sync import AdapterFactory
from bankrecon.services.banking import get_adapter


def get_adapter_factory() -> AdapterFactory:
    """Adapter factory used by sync endpoints (overridden in tests)."""
    return get_adapter


DbSession = Annotated[AsyncSession, Depends(get_db)]
AdapterFactoryDep = Annotated[AdapterFactory, Depends(get_adapter_factory)]

__all__ = ["AdapterFactoryDep", "DbSession", "get_adapter_factory"]
