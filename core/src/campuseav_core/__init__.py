from campuseav_core.config import CoreConfig, load_core_config
from campuseav_core.eav import AttributeSpec, EavService, ValueKind
from campuseav_core.home import CampusEavPaths, ensure_campuseav_layout, resolve_campuseav_home

__version__ = "0.1.0"

__all__ = [
    "AttributeSpec",
    "CampusEavPaths",
    "CoreConfig",
    "EavService",
    "ValueKind",
    "__version__",
    "ensure_campuseav_layout",
    "load_core_config",
    "resolve_campuseav_home",
]
