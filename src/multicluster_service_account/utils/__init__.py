# Utility functions and helpers for the multicluster service account operator
