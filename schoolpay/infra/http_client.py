"""
Client HTTP sortant partagé (pool httpx) pour les appels aux passerelles.
- Créé paresseusement au premier appel, fermé par le lifespan à l'arrêt.
- Les timeouts sont passés à chaque requête (valeurs lues dans config).
"""
import threading
from typing import Optional
import httpx

_client: Optional[httpx.Client] = None
_lock = threading.Lock()

def get_http_client() -> httpx.Client:
    global _client
    with _lock:
        if _client is None or _client.is_closed:
            _client = httpx.Client(follow_redirects=True)
        return _client

def close_http_client() -> None:
    global _client
    with _lock:
        if _client is not None:
            try:
                _client.close()
            finally:
                _client = None
