# Overview: Utility functions for permission lookups and validation.

from .definitions import PERMISSION_DEFINITIONS
from .modules import PermissionLevel


def permission_key(module: str, action: str) -> str:
    return f"{module}.{action}"


def split_permission_key(key: str) -> tuple[str, str] | None:
    """Split "module.action"; None when the key is malformed."""
    if not isinstance(key, str) or key.count(".") != 1:
        return None
    module, action = key.split(".")
    if not module or not action:
        return None
    return module, action


def get_all_permission_keys():
    """Get list of all permission keys."""
    return [permission_key(perm[0], perm[1]) for perm in PERMISSION_DEFINITIONS]


def validate_permission_key(key):
    """Check if a permission key is in the catalog."""
    return key in get_all_permission_keys()


def validate_level(level) -> bool:
    return isinstance(level, int) and not isinstance(level, bool) and level in PermissionLevel.ALL
