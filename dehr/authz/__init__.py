"""
Package authz answers whether a professional may read or write a health record.
"""

from .engine import (
    AuthorizationEngine,
    can_read,
    can_write,
    find_matching_grant,
    grant_allows,
)

__all__ = [
    'AuthorizationEngine',
    'can_read',
    'can_write',
    'find_matching_grant',
    'grant_allows',
]
