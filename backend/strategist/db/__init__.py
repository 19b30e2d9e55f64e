"""Database clients."""

from strategist.db.supabase import SupabaseClient, get_supabase_client

__all__ = ["SupabaseClient", "get_supabase_client"]
