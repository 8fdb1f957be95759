# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request utilities for extracting and validating request data.
"""

from flask import request
from typing import Any, Dict, Type, TypeVar
from pydantic import BaseModel, ValidationError
import logging

from middleware.error_handler import ValidationException

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class RequestParser:
    """Utility for parsing and validating request data into pydantic models."""
    
    @staticmethod
    def get_json_body() -> Dict[str, Any]:
        """
        JSON object body of the current request.
        
        Raises:
            ValidationException: If the body is missing or not an object
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationException("Request body must be a JSON object")
        return data
    
    @staticmethod
    def get_query_args() -> Dict[str, Any]:
        """Non-empty query arguments, first value per key."""
        return {key: value for key, value in request.args.items() if value != ""}
    
    @staticmethod
    def validate(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        """
        Validate data against a request model.
        
        Raises:
            ValidationException: With field-level errors on failure
        """
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(
                f"Request validation failed for {model.__name__}",
                extra={"path": request.path, "error_count": e.error_count()}
            )
            raise ValidationException.from_pydantic(e)
    
    @classmethod
    def parse_body(cls, model: Type[ModelT]) -> ModelT:
        return cls.validate(model, cls.get_json_body())
    
    @classmethod
    def parse_query(cls, model: Type[ModelT]) -> ModelT:
        """Validate query arguments; keys the model does not know are ignored."""
        return cls.validate(model, cls.get_query_args())
