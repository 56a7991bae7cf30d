"""
Request-level hardening: rate limiting and request risk analysis.
"""
