"""Database module: ORM models, connection and the mail repository"""
from .models import Base, Email, EmailAttachment, RagChunk, CalendarEvent, ImportLog
from .connection import Database
from .repository import MailRepository, sanitize_for_postgres

__all__ = [
    'Base',
    'Email',
    'EmailAttachment',
    'RagChunk',
    'CalendarEvent',
    'ImportLog',
    'Database',
    'MailRepository',
    'sanitize_for_postgres',
]
