"""
SwimSchool Billing - paid-through date engine for swim school enrolments.

This package contains the complete application:
- core: Framework-agnostic billing coverage logic
- infrastructure: Snowflake persistence
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
