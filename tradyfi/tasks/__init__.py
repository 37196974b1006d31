"""Celery tasks package."""

from tradyfi.tasks import notifications

__all__ = ["notifications"]
