"""
Dependency Injection Providers for Storefront Billing

FastAPI dependencies for database sessions and the repository bundle.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_billing.infrastructure.db.database import get_session
from storefront_billing.infrastructure.db.repositories import BillingRepositories


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_billing_repositories(
    session: SessionDep,
) -> AsyncGenerator[BillingRepositories, None]:
    """
    Dependency provider for the request's repositories.

    Usage:
        @router.get("/subscriptions/{id}")
        async def get_subscription(repos: RepositoriesDep):
            ...
    """
    yield BillingRepositories.from_session(session)


RepositoriesDep = Annotated[BillingRepositories, Depends(get_billing_repositories)]
