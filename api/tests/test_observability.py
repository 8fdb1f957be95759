# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for tracing and logging setup.
"""

import logging
from unittest.mock import patch
from flask import Flask, g

from models.entities import UserContext
from observability.config import setup_observability, setup_structured_logging
from observability.middleware import add_observability_middleware


class TestObservabilityConfig:
    """Test environment-dependent setup."""
    
    def test_test_environment_installs_no_provider(self):
        with patch("observability.config.trace.set_tracer_provider") as set_provider:
            setup_observability("test", otel_enabled=True)
        
        set_provider.assert_not_called()
    
    def test_disabled_installs_no_provider(self):
        with patch("observability.config.trace.set_tracer_provider") as set_provider:
            setup_observability("production", otel_enabled=False)
        
        set_provider.assert_not_called()
    
    def test_development_installs_sampled_provider(self):
        with patch("observability.config.trace.set_tracer_provider") as set_provider:
            setup_observability("development", otel_enabled=True)
        
        provider = set_provider.call_args[0][0]
        assert provider.resource.attributes["service.name"] == "relief-verification-api"
    
    def test_development_logs_domain_at_debug(self):
        setup_structured_logging("development")
        
        assert logging.getLogger("domain").level == logging.DEBUG
        assert logging.getLogger("services").level == logging.DEBUG


class TestObservabilityMiddleware:
    """Test request instrumentation."""
    
    def test_requests_pass_through(self):
        app = Flask(__name__)
        
        @app.route("/ping")
        def ping():
            return {"ok": True}
        
        add_observability_middleware(app)
        response = app.test_client().get("/ping")
        
        assert response.status_code == 200
        assert response.get_json() == {"ok": True}
    
    def test_request_log_carries_actor_and_record(self, caplog):
        app = Flask(__name__)
        
        @app.route("/records/<record_id>")
        def get_record(record_id):
            g.user_context = UserContext(user_id="coordinator-1")
            return {"id": record_id}
        
        add_observability_middleware(app)
        caplog.set_level(logging.INFO, logger="observability.middleware")
        app.test_client().get("/records/record-42")
        
        entry = next(r for r in caplog.records if r.name == "observability.middleware")
        assert entry.levelno == logging.INFO
        assert entry.user_id == "coordinator-1"
        assert entry.record_id == "record-42"
        assert entry.status_code == 200
    
    def test_server_errors_log_as_warnings(self, caplog):
        app = Flask(__name__)
        
        @app.route("/verification/metrics")
        def broken():
            return {"error": "store down"}, 503
        
        add_observability_middleware(app)
        caplog.set_level(logging.INFO, logger="observability.middleware")
        app.test_client().get("/verification/metrics?incident_id=incident-7")
        
        entry = next(r for r in caplog.records if r.name == "observability.middleware")
        assert entry.levelno == logging.WARNING
        assert entry.incident_id == "incident-7"
        assert not hasattr(entry, "user_id")
