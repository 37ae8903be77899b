"""
Feature modules live under this package.

Each module owns its models, service layer and API blueprint, and reuses the
platform primitives (RBAC, audit, DB session, error types).
"""
