"""
Supabase implementation of the marketplace backend contract.

GoTrue for auth, PostgREST for tables, Edge Functions for privileged
deletion and Postgres LISTEN/NOTIFY for real-time message inserts.
"""

from rentals.backend.supabase.auth import SupabaseAuthClient
from rentals.backend.supabase.client import SupabaseBackend
from rentals.backend.supabase.realtime import PostgresMessageFeed
from rentals.backend.supabase.rest import SupabaseRestClient

__all__ = ["SupabaseAuthClient", "SupabaseBackend", "PostgresMessageFeed", "SupabaseRestClient"]
