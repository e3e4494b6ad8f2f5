# bundleshop/handlers/__init__.py
"""Telegram handlers"""
from .base_handler import BaseHandler, admin_only
from .user_handlers import UserHandler
from .admin_handlers import AdminHandler

__all__ = [
    'BaseHandler',
    'admin_only',
    'UserHandler',
    'AdminHandler',
]
