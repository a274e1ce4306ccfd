"""Data access layer."""

from connectkit.repositories.base import BaseRepository, Page
from connectkit.repositories.contact import ContactRepository
from connectkit.repositories.user import UserRepository

__all__ = ["BaseRepository", "Page", "UserRepository", "ContactRepository"]
