"""Pydantic models for requirements, results and the API."""
