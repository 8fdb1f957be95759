# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and user context extraction.

Route decorators resolve the app's ``AuthMiddleware`` at request time, store
the caller's ``UserContext`` in ``g.user_context`` and raise the error
handler's exceptions on failure.
"""

from functools import wraps
from flask import request, g, current_app
from typing import Optional, Dict, Any, Callable
from opentelemetry import trace
from redis.exceptions import RedisError
import logging

from domain.authorization import check_permission
from middleware.error_handler import AuthenticationException, AuthorizationException
from models.entities import UserContext
from services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    JWT authentication middleware for Flask applications.
    
    Handles token extraction, validation, blocklist checking, and user context
    building for protected endpoints.
    """
    
    def __init__(self, auth_service, redis_service=None):
        """
        Initialize the authentication middleware.
        
        Args:
            auth_service: JWT authentication service
            redis_service: Redis service for the token blocklist, optional
        """
        self.auth_service = auth_service
        self.redis_service = redis_service
    
    def extract_token_from_request(self) -> Optional[str]:
        """Bearer token from the Authorization header, or None."""
        auth_header = request.headers.get('Authorization', '')
        if not auth_header:
            return None
        if auth_header.startswith('Bearer '):
            return auth_header[7:].strip() or None
        return auth_header
    
    def is_token_blocked(self, token_payload: Dict[str, Any]) -> bool:
        """Check the blocklist; treat an unreachable blocklist as blocked."""
        if self.redis_service is None:
            return False
        try:
            token_id = self.auth_service.extract_token_id(token_payload)
            return self.redis_service.is_token_blocked(token_id)
        except RedisError as e:
            logger.error(f"Error checking token blocklist: {str(e)}")
            return True
    
    def build_user_context(self, token_payload: Dict[str, Any]) -> UserContext:
        """UserContext from a validated token payload."""
        return UserContext(
            user_id=token_payload["sub"],
            email=token_payload.get("email"),
            name=token_payload.get("name"),
            permissions=token_payload.get("permissions") or [],
            token_payload=token_payload,
            ip_address=request.remote_addr
        )
    
    def authenticate(self) -> UserContext:
        """
        Authenticate the current request.
        
        Raises:
            AuthenticationException: Missing, invalid, expired or revoked token
        """
        with tracer.start_as_current_span("auth.middleware.validate_request") as span:
            token = self.extract_token_from_request()
            if not token:
                span.set_attribute("auth.result", "missing_token")
                logger.warning("Authentication failed: missing token")
                raise AuthenticationException("Missing authorization token")
            
            try:
                token_payload = self.auth_service.validate_token(token, "access")
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                raise AuthenticationException(str(e))
            
            if self.is_token_blocked(token_payload):
                span.set_attribute("auth.result", "token_blocked")
                logger.warning("Authentication failed: token is blocked")
                raise AuthenticationException("Token has been revoked")
            
            user_context = self.build_user_context(token_payload)
            span.set_attributes({"auth.result": "success", "user.id": user_context.user_id})
            logger.debug(
                "Authentication successful",
                extra={"user_id": user_context.user_id, "ip_address": user_context.ip_address}
            )
            return user_context


def require_auth(f: Callable) -> Callable:
    """Require a valid bearer token; sets ``g.user_context``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user_context = current_app.auth_middleware.authenticate()
        return f(*args, **kwargs)
    return decorated_function


def require_permission(permission: str) -> Callable:
    """
    Require authentication plus one permission.
    
    Args:
        permission: Required permission string
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_context = current_app.auth_middleware.authenticate()
            result = check_permission(user_context, permission)
            if not result.allowed:
                logger.warning(
                    f"Authorization failed: missing permission '{permission}'",
                    extra={
                        "user_id": user_context.user_id,
                        "required_permission": permission,
                        "path": request.path
                    }
                )
                raise AuthorizationException(result.reason)
            g.user_context = user_context
            return f(*args, **kwargs)
        return decorated_function
    return decorator
