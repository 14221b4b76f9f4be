"""Backend utilities"""
from .supabase_client import get_supabase_client
from .auth import require_dashboard_auth

__all__ = ["get_supabase_client", "require_dashboard_auth"]
