"""Role discovery and assumption."""

from no_wing.roles.cache import SessionCache
from no_wing.roles.models import RoleDescriptor, RoleSession
from no_wing.roles.patterns import ROLE_PATTERNS, matches_pattern, pattern_specificity
from no_wing.roles.resolver import RoleResolver

__all__ = [
    "ROLE_PATTERNS",
    "RoleDescriptor",
    "RoleResolver",
    "RoleSession",
    "SessionCache",
    "matches_pattern",
    "pattern_specificity",
]
