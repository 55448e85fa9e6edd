"""
Infrastructure layer - external service integrations.

- storage: Object storage (R2/S3)

These wrappers translate between external formats and our domain models.
"""
