"""Unit tests for the multicluster service account operator."""
