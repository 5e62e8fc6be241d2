"""
Application configuration using Pydantic settings.

Configuration comes from environment variables and .env. Snowflake mock
mode runs the service without a database.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
