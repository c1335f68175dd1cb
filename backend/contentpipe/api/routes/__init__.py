"""
API route modules.
"""

from contentpipe.api.routes import content

__all__ = ["content"]
