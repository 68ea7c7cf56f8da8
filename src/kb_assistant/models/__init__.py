"""Pydantic models for API payloads and domain records."""
