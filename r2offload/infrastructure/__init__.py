"""
Infrastructure layer - external service integrations.

- storage: Cloudflare R2 object store client (SigV4 signed httpx requests)
- records: Media record store implementations

These wrappers translate between external formats and our domain models.
"""
