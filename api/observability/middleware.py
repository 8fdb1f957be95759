"""
Observability Middleware

Flask instrumentation for the verification API: OpenTelemetry spans, request
timing, an X-Trace-Id correlation header, and a request log line carrying the
acting user and the record, entity or incident the request addressed.
"""

import time
import logging
from typing import Any, Dict
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

logger = logging.getLogger(__name__)

# Path parameters copied onto the request span and log line
RESOURCE_PARAMS = ("record_id", "entity_id", "incident_id", "donor_id")


def request_context() -> Dict[str, Any]:
    """Actor and addressed resources of the current request."""
    context = {}
    user_context = g.get('user_context')
    if user_context is not None:
        context["user_id"] = user_context.user_id
    for name in RESOURCE_PARAMS:
        value = (request.view_args or {}).get(name) or request.args.get(name)
        if value:
            context[name] = value
    return context


def add_observability_middleware(app: Flask):
    """Instrument the app and log every completed request."""
    
    FlaskInstrumentor().instrument_app(app)
    
    @app.before_request
    def before_request():
        g.start_time = time.time()
        g.trace_id = None
        
        span = trace.get_current_span()
        if span.is_recording():
            g.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attribute("http.target", request.path)
    
    @app.after_request
    def after_request(response):
        duration_ms = round((time.time() - g.get('start_time', time.time())) * 1000, 2)
        context = request_context()
        
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attributes({
                "http.status_code": response.status_code,
                "http.duration_ms": duration_ms,
                **{f"relief.{key}": value for key, value in context.items()}
            })
        
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.path} -> {response.status_code}",
            extra={
                "method": request.method,
                "endpoint": request.endpoint,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "trace_id": g.get('trace_id'),
                **context
            }
        )
        
        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id
        
        return response
