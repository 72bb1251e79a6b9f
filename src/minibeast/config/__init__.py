"""Configuration loading and defaults for the MiniBeast deployer.

Main components:
- load_settings: Resolve server settings from flags, environment and defaults
- flatten_pydantic_errors: Human-readable validation messages
- Default constants for provisioning (step order, delays, sizes)
"""

from minibeast.config.loader import load_settings
from minibeast.config.validator import flatten_pydantic_errors

__all__ = [
    "flatten_pydantic_errors",
    "load_settings",
]
