#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

"""
Issue a development access token signed with JWT_SECRET.

Usage: issue_token.py USER_ID [PERMISSION ...]
Without permissions the token carries every permission the API checks.
"""

import os
import sys
from datetime import timedelta

from domain import authorization as perms
from services.auth import create_auth_service


def main(argv) -> int:
    if not argv:
        print(__doc__.strip(), file=sys.stderr)
        return 2
    if not os.getenv("JWT_SECRET"):
        print("JWT_SECRET must be set so the API accepts the token", file=sys.stderr)
        return 2
    
    user_id, permissions = argv[0], argv[1:] or perms.ALL_PERMISSIONS
    auth_service = create_auth_service()
    token = auth_service.generate_token(user_id, permissions, expires_in=timedelta(hours=8))
    
    payload = auth_service.validate_token(token)
    print(f"# user={payload['sub']} permissions={','.join(payload['permissions'])}", file=sys.stderr)
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
