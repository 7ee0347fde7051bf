"""
Supabase utility module for interacting with the Supabase database.
"""

from .db_client import (
    get_supabase_client,
)

__all__ = [
    'get_supabase_client',
]
