"""Server runtime package for the deployment API.

This module provides the FastAPI application that accepts image uploads,
reports deployment progress and drives validation runs.
"""

__all__: list[str] = []
