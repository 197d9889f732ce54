"""crudflow - CRUD 生命週期編排引擎"""

from .crud.core import AutoCRUD
from .crud.route_templates.basic import DependencyProvider
from .config import AuditConfig, ControllerConfig
from .model import Base, ModelSpec
from .query import resolve_query
from .resource_manager.collector import collect_ids, resolve_id
from .resource_manager.core import ResourceManager
from .resource_manager.differ import patch_value
from .resource_manager.memory import MemoryDatabase
from .service import Service, ServiceRegistry
from .types import (
    CRUDError,
    IDatabase,
    NotFoundError,
    Phase,
    RequestContext,
    ServiceError,
    ValidationError,
)

__version__ = "0.1.0"
__all__ = [
    "AutoCRUD",
    "DependencyProvider",
    "AuditConfig",
    "ControllerConfig",
    "Base",
    "ModelSpec",
    "resolve_query",
    "collect_ids",
    "resolve_id",
    "ResourceManager",
    "patch_value",
    "MemoryDatabase",
    "Service",
    "ServiceRegistry",
    "CRUDError",
    "IDatabase",
    "NotFoundError",
    "Phase",
    "RequestContext",
    "ServiceError",
    "ValidationError",
]
