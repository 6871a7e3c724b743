"""API version 1."""

from src.api.v1.router import router

__all__ = ["router"]
