"""
R2 Offload - moves a media library to Cloudflare R2.

This package contains the complete application:
- core: Framework-agnostic offload, URL and sync logic
- infrastructure: Object store client (SigV4 over httpx) and record store
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
