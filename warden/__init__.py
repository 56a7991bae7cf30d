"""
Warden: identity, session and security-audit core.
"""

__version__ = "0.1.0"
