"""
Handlers package - Contains all Kopf event handlers.

This package organizes handlers by resource type:
- service_account_import.py: ServiceAccountImport reconciliation and resync
- bootstrap.py: invalidation of remote connections on bootstrap secret changes
"""
