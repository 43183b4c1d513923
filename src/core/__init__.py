"""
Core Module

Contiene el contexto de aplicación y dependency injection.
"""

from src.core.context import AppContext, create_app_context

__all__ = ["AppContext", "create_app_context"]
