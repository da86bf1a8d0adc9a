"""
Changes SDK Test Suite.

This package contains:
- unit/: Unit tests (scripted in-memory transport)
- integration/: HTTP transport and client tests against a mocked server
"""
