"""
Association Media - file storage for the association website.

This package contains the complete service:
- core: Media models, upload policies and the media library
- infrastructure: Storage backends (cloud object storage, local disk)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
