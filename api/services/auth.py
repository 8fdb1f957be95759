# SPDX-License-Identifier: Apache-2.0

"""
Authentication service for JWT bearer tokens.

Tokens are issued by the identity provider in front of this service and
signed with a shared secret (HS256 by default). ``generate_token`` exists
for development and tests.
"""

import os
import secrets
import uuid
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

# Environments allowed to run with a random per-process secret
DEV_ENVIRONMENTS = {"development", "test"}


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


class AuthService:
    """JWT validation for coordinators, field users and analysts."""
    
    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None,
                 access_token_expire_minutes: int = 15, environment: Optional[str] = None):
        """
        Initialize the authentication service.
        
        Args:
            secret: Signing secret; falls back to JWT_SECRET
            algorithm: Signing algorithm; falls back to JWT_ALGORITHM or HS256
            access_token_expire_minutes: Lifetime of generated tokens
            environment: Deployment environment; falls back to ENVIRONMENT
        
        Raises:
            ValueError: If no secret is configured outside development and test
        """
        environment = environment or os.getenv("ENVIRONMENT", "development")
        self.secret = secret or os.getenv("JWT_SECRET")
        if not self.secret:
            if environment not in DEV_ENVIRONMENTS:
                raise ValueError(f"JWT_SECRET must be set in the {environment} environment")
            # Tokens signed with it only validate within this process
            logger.warning("No JWT_SECRET found, generating development secret")
            self.secret = secrets.token_urlsafe(32)
        self.algorithm = algorithm or os.getenv("JWT_ALGORITHM", "HS256")
        self.access_token_expire_minutes = access_token_expire_minutes
    
    def generate_token(self, user_id: str, permissions: List[str], email: Optional[str] = None,
                       name: Optional[str] = None, expires_in: Optional[timedelta] = None) -> str:
        """Sign an access token carrying the given permissions."""
        with tracer.start_as_current_span("auth.generate_token") as span:
            span.set_attribute("user.id", user_id)
            now = datetime.now(timezone.utc)
            payload = {
                "sub": user_id,
                "email": email,
                "name": name,
                "permissions": permissions,
                "iat": now,
                "exp": now + (expires_in or timedelta(minutes=self.access_token_expire_minutes)),
                "jti": str(uuid.uuid4()),
                "type": "access"
            }
            return jwt.encode(payload, self.secret, algorithm=self.algorithm)
    
    def validate_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Validate and decode a JWT token.
        
        Args:
            token: JWT token string to validate
            token_type: Expected token type
            
        Returns:
            Decoded token payload
            
        Raises:
            TokenValidationError: If token is invalid or expired
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attributes({
                "auth.operation": "validate_token",
                "auth.token_type": token_type
            })
            
            try:
                payload = jwt.decode(
                    token,
                    self.secret,
                    algorithms=[self.algorithm],
                    options={"verify_exp": True, "require": ["sub", "exp"]}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")
            
            if payload.get("type", token_type) != token_type:
                span.set_attribute("auth.validation_result", "wrong_type")
                raise TokenValidationError(f"Invalid token type. Expected {token_type}")
            
            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub")
            })
            logger.debug("Token validated successfully", extra={"user_id": payload.get("sub")})
            return payload
    
    def extract_token_id(self, payload: Dict[str, Any]) -> str:
        """Blocklist key of a decoded token: its ``jti``, else subject and issue time."""
        return payload.get("jti") or f"{payload.get('sub')}:{payload.get('iat')}"


def create_auth_service() -> AuthService:
    """Create the auth service from environment configuration."""
    return AuthService(
        os.getenv("JWT_SECRET"),
        os.getenv("JWT_ALGORITHM", "HS256"),
        environment=os.getenv("ENVIRONMENT", "development")
    )
