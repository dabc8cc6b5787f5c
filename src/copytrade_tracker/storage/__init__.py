"""Storage module - Persistent data storage layer."""

from copytrade_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from copytrade_tracker.storage.models import (
    Base,
    PositionModel,
    ProcessingErrorModel,
    WalletModel,
)
from copytrade_tracker.storage.repos import (
    PositionRepository,
    ProcessingErrorDTO,
    ProcessingErrorRepository,
    WalletRecord,
    WalletRepository,
)
from copytrade_tracker.storage.types import ExactDecimal

__all__ = [
    # Database
    "DatabaseManager",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    # Models
    "Base",
    "PositionModel",
    "ProcessingErrorModel",
    "WalletModel",
    "ExactDecimal",
    # Repositories
    "PositionRepository",
    "ProcessingErrorDTO",
    "ProcessingErrorRepository",
    "WalletRecord",
    "WalletRepository",
]
