from fastapi import Depends
from services.cache import get_cache_client
from services.store import get_store
from auth.security import get_current_client

# --- DEPENDENCY INJECTION SETUP ---
CLIENT_AUTH = Depends(get_current_client)
STORE_DEPENDENCY = Depends(get_store)
CACHE_CLIENT = Depends(get_cache_client)
