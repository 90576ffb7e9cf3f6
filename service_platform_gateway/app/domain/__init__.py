"""
Domain utilities for the platform gateway.

Includes the core models, the upstream query dialect, procedure payload
unwrapping, and route authorization.
"""
