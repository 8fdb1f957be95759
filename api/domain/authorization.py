# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for role-gated verification actions.

Pure permission checks over the authenticated user context. Who holds which
permission is decided by the identity provider issuing tokens.
"""

from typing import List, Optional
from dataclasses import dataclass
from models.entities import UserContext


RECORD_SUBMIT = "record:submit"
RECORD_READ = "record:read"
RECORD_VERIFY = "record:verify"
RECORD_REJECT = "record:reject"
AUTOAPPROVAL_CONFIGURE = "autoapproval:configure"
ANALYTICS_READ = "analytics:read"
DONOR_RANK = "donor:rank"

ALL_PERMISSIONS = [
    RECORD_SUBMIT,
    RECORD_READ,
    RECORD_VERIFY,
    RECORD_REJECT,
    AUTOAPPROVAL_CONFIGURE,
    ANALYTICS_READ,
    DONOR_RANK
]


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    missing_permissions: List[str] = None


def check_permission(user_context: UserContext, required_permission: str) -> AuthorizationResult:
    """
    Check if user has a specific permission.
    
    Args:
        user_context: User context with permissions
        required_permission: Permission string to check
        
    Returns:
        AuthorizationResult indicating if permission is granted
    """
    if user_context.has_permission(required_permission):
        return AuthorizationResult(allowed=True)
    
    return AuthorizationResult(
        allowed=False,
        reason=f"Missing required permission: {required_permission}",
        missing_permissions=[required_permission]
    )

