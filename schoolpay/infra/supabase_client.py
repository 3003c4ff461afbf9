from typing import Optional
from supabase import create_client, Client
from schoolpay import config

_supabase: Optional[Client] = None
_service_supabase: Optional[Client] = None

def get_supabase() -> Client:
    """Client 'anon' partagé (vérification des jetons utilisateur)."""
    global _supabase
    if _supabase is None:
        if not config.SUPABASE_URL or not config.SUPABASE_ANON:
            raise RuntimeError("SUPABASE_URL/SUPABASE_ANON_KEY manquants pour get_supabase()")
        _supabase = create_client(config.SUPABASE_URL, config.SUPABASE_ANON)
    return _supabase

def get_service_supabase() -> Client:
    """
    Client service-role (bypass RLS): seul autorisé à écrire dans le ledger
    'payment_checkout' et à lire les élèves pour le compte d'un appelant.
    """
    global _service_supabase
    if not config.SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_KEY manquant pour get_service_supabase()")
    if _service_supabase is None:
        _service_supabase = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
    return _service_supabase
