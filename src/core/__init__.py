"""
Core business logic for enrolment billing.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake,
or any infrastructure concerns. Coverage arithmetic is tested in
isolation and persistence is reached only through a repository protocol.
"""
