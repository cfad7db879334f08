"""
Tests package for the multicluster service account operator.

Contains:
- unit/: Unit tests for individual components
"""
