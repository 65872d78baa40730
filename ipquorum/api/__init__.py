"""
Status API for ipquorum.
"""

from ipquorum.api.server import StatusAPI, create_app

__all__ = [
    "create_app",
    "StatusAPI",
]
