from supabase import create_client, Client
from workorder_engine.config import settings

def get_supabase_client() -> Client:
    """
    Create and return a Supabase client instance.
    Uses the service role key; the engine writes work orders and the review queue.
    """
    supabase: Client = create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY
    )
    return supabase
