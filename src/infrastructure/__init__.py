"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- snowflake: Database persistence for enrolments, holidays and coverage audits

These wrappers translate between external formats and our domain models.
"""
