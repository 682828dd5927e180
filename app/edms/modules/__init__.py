"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its models and service
operations, while reusing platform primitives (RBAC, audit, operation
boundary, repository helpers, DB session).
"""
