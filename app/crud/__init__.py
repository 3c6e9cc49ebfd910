"""
CRUD operations (Create, Read, Update, Delete) for database models.

This layer provides a clean separation between protocol code and database
operations, following the Repository pattern.
"""

from app.crud import verification_record

__all__ = ["verification_record"]
