"""
Test Fixtures Package

Factories for requests, SSE bodies and fake backends.
"""
