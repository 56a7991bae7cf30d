"""
Configuration: pydantic models loaded from a JSON file with environment overrides.
"""

from warden.core.config.loader import ENV_OVERRIDES, load_config
from warden.core.config.models import WardenConfig

__all__ = ["ENV_OVERRIDES", "WardenConfig", "load_config"]
