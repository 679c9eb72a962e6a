"""
Legal Review Hub - Routes Package

API routers for the Legal Review Hub.
"""

from .requests import router as requests_router, set_dependencies as set_requests_deps

__all__ = [
    'requests_router', 'set_requests_deps',
]
