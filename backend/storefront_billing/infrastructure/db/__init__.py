"""
Database Infrastructure Package for Storefront Billing

Exports database utilities and dependencies.
"""

from storefront_billing.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
)

from storefront_billing.infrastructure.db.dependencies import (
    SessionDep,
    RepositoriesDep,
    get_billing_repositories,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "SessionDep",
    "RepositoriesDep",
    "get_billing_repositories",
]
