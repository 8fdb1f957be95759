# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for JWT validation and the authentication middleware.
"""

import jwt
import pytest
from datetime import timedelta
from flask import Flask, g
from unittest.mock import MagicMock
from redis.exceptions import RedisError

from domain import authorization as perms
from middleware.auth import AuthMiddleware, require_auth, require_permission
from middleware.error_handler import AuthenticationException, AuthorizationException
from services.auth import AuthService, TokenValidationError
from services.redis import RedisService



class TestAuthService:
    """Test token generation and validation."""
    
    def test_round_trip(self, auth_service):
        token = auth_service.generate_token("user-1", [perms.RECORD_READ], email="a@example.org")
        
        payload = auth_service.validate_token(token)
        
        assert payload["sub"] == "user-1"
        assert payload["permissions"] == [perms.RECORD_READ]
        assert payload["jti"]
    
    def test_expired_token(self, auth_service):
        token = auth_service.generate_token("user-1", [], expires_in=timedelta(seconds=-5))
        
        with pytest.raises(TokenValidationError, match="expired"):
            auth_service.validate_token(token)
    
    def test_wrong_secret(self, auth_service):
        token = AuthService("another-secret").generate_token("user-1", [])
        
        with pytest.raises(TokenValidationError):
            auth_service.validate_token(token)
    
    def test_subject_required(self, auth_service):
        token = jwt.encode({"exp": 9999999999}, auth_service.secret, algorithm="HS256")
        
        with pytest.raises(TokenValidationError):
            auth_service.validate_token(token)
    
    def test_wrong_token_type(self, auth_service):
        token = jwt.encode({"sub": "u", "exp": 9999999999, "type": "refresh"}, auth_service.secret, algorithm="HS256")
        
        with pytest.raises(TokenValidationError, match="token type"):
            auth_service.validate_token(token)
    
    def test_token_id_fallback(self, auth_service):
        assert auth_service.extract_token_id({"jti": "abc"}) == "abc"
        assert auth_service.extract_token_id({"sub": "u", "iat": 10}) == "u:10"


class TestSigningSecret:
    """Test how the signing secret is resolved when JWT_SECRET is missing."""
    
    @pytest.mark.parametrize("environment", ["production", "staging"])
    def test_secret_required_outside_development(self, monkeypatch, environment):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        
        with pytest.raises(ValueError, match="JWT_SECRET"):
            AuthService(environment=environment)
    
    def test_environment_read_from_env(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("ENVIRONMENT", "production")
        
        with pytest.raises(ValueError):
            AuthService()
    
    def test_development_secret_is_random_per_process(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        
        first = AuthService(environment="development")
        second = AuthService(environment="development")
        
        assert first.secret != second.secret
        with pytest.raises(TokenValidationError):
            second.validate_token(first.generate_token("user-1", perms.ALL_PERMISSIONS))
    
    def test_token_signed_with_guessable_secret_rejected(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        service = AuthService(environment="test")
        forged = jwt.encode(
            {"sub": "intruder", "exp": 9999999999,
             "permissions": [perms.RECORD_VERIFY, perms.AUTOAPPROVAL_CONFIGURE]},
            "dev-secret-change-me",
            algorithm="HS256"
        )
        
        with pytest.raises(TokenValidationError):
            service.validate_token(forged)
    
    def test_configured_secret_used_in_production(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "deployment-secret")
        
        assert AuthService(environment="production").secret == "deployment-secret"


class TestAuthMiddleware:
    """Test request authentication."""
    
    @pytest.fixture
    def flask_app(self):
        return Flask(__name__)
    
    def test_authenticate(self, flask_app, auth_service):
        token = auth_service.generate_token("user-1", [perms.RECORD_VERIFY], name="Coordinator")
        middleware = AuthMiddleware(auth_service)
        
        with flask_app.test_request_context(headers={"Authorization": f"Bearer {token}"}):
            user_context = middleware.authenticate()
        
        assert user_context.user_id == "user-1"
        assert user_context.name == "Coordinator"
        assert user_context.has_permission(perms.RECORD_VERIFY)
    
    def test_missing_token(self, flask_app, auth_service):
        with flask_app.test_request_context():
            with pytest.raises(AuthenticationException, match="Missing"):
                AuthMiddleware(auth_service).authenticate()
    
    def test_invalid_token(self, flask_app, auth_service):
        with flask_app.test_request_context(headers={"Authorization": "Bearer not-a-jwt"}):
            with pytest.raises(AuthenticationException):
                AuthMiddleware(auth_service).authenticate()
    
    def test_revoked_token(self, flask_app, auth_service):
        client = MagicMock()
        client.exists.return_value = 1
        middleware = AuthMiddleware(auth_service, RedisService(client=client))
        token = auth_service.generate_token("user-1", [])
        
        with flask_app.test_request_context(headers={"Authorization": f"Bearer {token}"}):
            with pytest.raises(AuthenticationException, match="revoked"):
                middleware.authenticate()
        
        assert client.exists.call_args[0][0].startswith("blocklist:")
    
    def test_unreachable_blocklist_rejects(self, flask_app, auth_service):
        client = MagicMock()
        client.exists.side_effect = RedisError("timeout")
        middleware = AuthMiddleware(auth_service, RedisService(client=client))
        token = auth_service.generate_token("user-1", [])
        
        with flask_app.test_request_context(headers={"Authorization": f"Bearer {token}"}):
            with pytest.raises(AuthenticationException):
                middleware.authenticate()
    
    def test_without_redis_nothing_is_blocked(self, auth_service):
        assert not AuthMiddleware(auth_service, RedisService("")).is_token_blocked({"jti": "x"})


class TestRouteDecorators:
    """Test the decorators against a minimal app."""
    
    @pytest.fixture
    def flask_app(self, auth_service):
        app = Flask(__name__)
        app.auth_middleware = AuthMiddleware(auth_service)
        
        @app.route("/whoami")
        @require_auth
        def whoami():
            return {"user_id": g.user_context.user_id}
        
        @app.route("/verify")
        @require_permission(perms.RECORD_VERIFY)
        def verify():
            return {"ok": True}
        
        return app
    
    def test_require_auth_sets_user_context(self, flask_app, auth_service):
        token = auth_service.generate_token("user-7", [])
        
        with flask_app.test_request_context("/whoami", headers={"Authorization": f"Bearer {token}"}):
            response = flask_app.view_functions["whoami"]()
        
        assert response == {"user_id": "user-7"}
    
    def test_require_permission_denied(self, flask_app, auth_service):
        token = auth_service.generate_token("user-7", [perms.RECORD_READ])
        
        with flask_app.test_request_context("/verify", headers={"Authorization": f"Bearer {token}"}):
            with pytest.raises(AuthorizationException, match=perms.RECORD_VERIFY):
                flask_app.view_functions["verify"]()
    
    def test_require_permission_granted(self, flask_app, auth_service):
        token = auth_service.generate_token("user-7", [perms.RECORD_VERIFY])
        
        with flask_app.test_request_context("/verify", headers={"Authorization": f"Bearer {token}"}):
            assert flask_app.view_functions["verify"]() == {"ok": True}
            assert g.user_context.user_id == "user-7"
