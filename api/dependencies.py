"""
Shared instances for the API layer, injected at startup.
"""
from typing import Optional

from api.connections import ConnectionManager
from core.services import Services

services: Optional[Services] = None

connection_manager = ConnectionManager()


def set_services(instance: Services):
    """Set core services instance."""
    global services
    services = instance
    connection_manager.set_redis(instance.redis)


def get_services() -> Services:
    if services is None:
        raise RuntimeError("Services are not initialized")
    return services


def get_connection_manager() -> ConnectionManager:
    return connection_manager
