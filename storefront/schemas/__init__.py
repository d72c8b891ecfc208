"""Schemas package initialization"""

from .cart import CartItem, CartSnapshot

__all__ = ["CartItem", "CartSnapshot"]
