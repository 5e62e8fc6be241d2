"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .enrolments import EnrolmentCoverageRepository, SnowflakeConfig

__all__ = ["EnrolmentCoverageRepository", "SnowflakeConfig"]
