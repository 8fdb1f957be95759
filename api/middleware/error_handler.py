# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured HAL responses.
Provides the application exception taxonomy and centralized error formatting.
"""

from flask import Flask, request
from werkzeug.exceptions import HTTPException
from pydantic import ValidationError
from typing import Dict, Any, List, Tuple
from opentelemetry import trace
import logging
from contextlib import contextmanager

from services.hal import HalFormatter
from services.mongodb import StoreError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "An internal error occurred"


class CustomException(Exception):
    """Base class for custom application exceptions."""
    
    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class ValidationException(CustomException):
    """Malformed, missing or out-of-enum input."""
    
    def __init__(self, message: str, validation_errors: list = None):
        super().__init__(message, 400, "validation-error")
        self.validation_errors = validation_errors or []
    
    @classmethod
    def from_pydantic(cls, error: ValidationError, message: str = "Request validation failed"):
        return cls(message, format_pydantic_errors(error))


class AuthenticationException(CustomException):
    """Exception for authentication errors."""
    
    def __init__(self, message: str):
        super().__init__(message, 401, "authentication-required")


class AuthorizationException(CustomException):
    """Role-gated action attempted without the required permission."""
    
    def __init__(self, message: str):
        super().__init__(message, 403, "insufficient-permissions")


class NotFoundException(CustomException):
    """Exception for resource not found errors."""
    
    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class InvalidStateTransitionException(CustomException):
    """Action attempted on a record that is not in a state allowing it."""
    
    def __init__(self, message: str, current_status: str = None):
        super().__init__(message, 409, "invalid-state-transition")
        self.current_status = current_status


class StateConflictException(CustomException):
    """Lost a compare-and-set race against a concurrent transition."""
    
    def __init__(self, message: str, current_status: str = None):
        super().__init__(message, 409, "state-conflict")
        self.current_status = current_status


class InternalException(CustomException):
    """Store or transaction failure; details stay in the logs."""
    
    def __init__(self, message: str = GENERIC_SERVER_ERROR):
        super().__init__(message, 500, "internal-server-error")


class ServiceUnavailableException(CustomException):
    """A required coordination resource is busy or unreachable."""
    
    def __init__(self, message: str):
        super().__init__(message, 503, "service-unavailable")


@contextmanager
def store_guard(operation: str):
    """Surface record store failures as a generic InternalException."""
    try:
        yield
    except StoreError as e:
        logger.error(
            f"Record store failure during {operation}",
            extra={"operation": operation, "error": str(e)},
            exc_info=True
        )
        raise InternalException() from e


def format_pydantic_errors(error: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into field/message pairs."""
    return [
        {
            "field": ".".join(str(part) for part in item["loc"]) or "body",
            "message": item["msg"],
            "type": item["type"]
        }
        for item in error.errors()
    ]


class ErrorHandlerMiddleware:
    """Centralized error handling middleware with HAL response formatting."""
    
    def __init__(self, app: Flask, hal_formatter: HalFormatter):
        self.app = app
        self.hal_formatter = hal_formatter
        self.register_error_handlers()
    
    def register_error_handlers(self):
        """Register error handlers with Flask application."""
        
        @self.app.errorhandler(CustomException)
        def handle_custom_exception(error: CustomException):
            return self.handle_custom_exception(error)
        
        @self.app.errorhandler(HTTPException)
        def handle_http_exception(error: HTTPException):
            return self.handle_http_error(error)
        
        @self.app.errorhandler(Exception)
        def handle_generic_exception(error):
            return self.handle_unexpected_error(error)
    
    def handle_custom_exception(self, error: CustomException) -> Tuple[Dict[str, Any], int]:
        """
        Format an application exception.
        
        Args:
            error: Raised application exception
            
        Returns:
            Tuple of (error response dict, status code)
        """
        with tracer.start_as_current_span("error_handler.custom_exception") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.method": request.method,
                "http.path": request.path
            })
            
            log = logger.error if error.status_code >= 500 else logger.warning
            log(
                f"Request failed: {error.error_type}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "detail": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )
            
            formatter = self.hal_formatter
            if isinstance(error, ValidationException):
                body = formatter.format_validation_error(error.message, request.path, error.validation_errors)
            elif isinstance(error, AuthenticationException):
                body = formatter.format_authentication_error(error.message, request.path)
            elif isinstance(error, AuthorizationException):
                body = formatter.format_authorization_error(error.message, request.path)
            elif isinstance(error, NotFoundException):
                body = formatter.format_not_found_error(error.message, request.path)
            elif isinstance(error, (InvalidStateTransitionException, StateConflictException)):
                body = formatter.format_conflict_error(
                    error.error_type, error.message, request.path, error.current_status
                )
            elif isinstance(error, ServiceUnavailableException):
                body = formatter.builder.build_error_response(
                    error.error_type, "Service Unavailable", 503, error.message, request.path
                )
            else:
                body = formatter.format_server_error(GENERIC_SERVER_ERROR, request.path)
            
            return body, error.status_code
    
    def handle_http_error(self, error: HTTPException) -> Tuple[Dict[str, Any], int]:
        """Format routing-level HTTP errors (404, 405, ...)."""
        detail = str(error.description) if error.description else error.name
        status = error.code or 500
        
        logger.warning(
            f"HTTP error: {error.name}",
            extra={
                "status_code": status,
                "path": request.path,
                "method": request.method
            }
        )
        
        if status == 404:
            body = self.hal_formatter.format_not_found_error(detail, request.path)
        elif status >= 500:
            body = self.hal_formatter.format_server_error(GENERIC_SERVER_ERROR, request.path)
        else:
            error_type = error.name.lower().replace(" ", "-")
            body = self.hal_formatter.builder.build_error_response(
                error_type, error.name, status, detail, request.path
            )
        return body, status
    
    def handle_unexpected_error(self, error: Exception) -> Tuple[Dict[str, Any], int]:
        """
        Handle unexpected exceptions not caught by specific handlers.
        
        Args:
            error: Unexpected exception
            
        Returns:
            Tuple of (error response dict, status code)
        """
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)
            
            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )
            
            # Storage internals never reach the client
            return self.hal_formatter.format_server_error(GENERIC_SERVER_ERROR, request.path), 500
