"""Utility helpers package."""

from tradyfi.utils.exceptions import TradyfiException, register_exception_handlers

__all__ = ["TradyfiException", "register_exception_handlers"]
