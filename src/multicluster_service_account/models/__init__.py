"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- ServiceAccountImport specifications and status
- Credentials mirrored from remote clusters
"""
