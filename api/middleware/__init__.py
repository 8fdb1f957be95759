# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

This package contains authentication, authorization and error handling
components shared by the API blueprints.
"""
