from .config import ServerConfig, load_config
from .context import ServiceContext, build_context
from .job_registry import InMemoryJobRegistry
from .model_resource import ModelResource

__all__ = [
    "InMemoryJobRegistry",
    "ModelResource",
    "ServerConfig",
    "ServiceContext",
    "build_context",
    "load_config",
]
