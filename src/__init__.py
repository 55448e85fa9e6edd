"""
Hotlink Guard - an edge gateway for serving media from object storage.

This package contains the complete application:
- core: Framework-agnostic access control and request pipeline
- infrastructure: Object storage integration (R2/S3)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
