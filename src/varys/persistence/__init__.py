"""Storage of interactor configs, sessions and interactions."""

from .gateway import InMemoryPersistenceGateway, PersistenceGateway
from .sql import SqlPersistenceGateway, metadata

__all__ = ["InMemoryPersistenceGateway", "PersistenceGateway", "SqlPersistenceGateway", "metadata"]
