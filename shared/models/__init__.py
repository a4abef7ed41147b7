"""Pydantic models for gateway payloads."""
