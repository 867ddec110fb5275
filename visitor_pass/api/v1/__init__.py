"""API v1 routers"""
from . import passes

__all__ = ["passes"]
