"""Core module for the tourneydraft application."""

from .types import FirestoreDocument

__all__ = ["FirestoreDocument"]
