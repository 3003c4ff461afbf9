"""
Résolution de l'origine publique (URLs de retour/callback envoyées aux passerelles).

Fonction pure: resolve_base_url(settings, headers) avec deux structures explicites,
testable indépendamment de toute requête. Ordre de priorité (premier trouvé):
  1. URL publique configurée (absolue http/https)
  2. X-Forwarded-Host = domaine de production
  3. Referer sur le domaine de production
  4. X-Forwarded-Host non loopback
  5. Referer non loopback
  6. Host non loopback (schéma: X-Forwarded-Proto, sinon celui de la requête)
  7. https://<domaine de production> si l'environnement est la production
  8. origine de la requête (éventuellement localhost en dev, avec avertissement)
"""
import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import Request
from pydantic import BaseModel

from schoolpay import config

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}


class BaseUrlSettings(BaseModel):
    public_base_url: Optional[str] = None
    production_domain: str
    is_production: bool = False


class RequestHeaders(BaseModel):
    host: Optional[str] = None
    forwarded_host: Optional[str] = None
    forwarded_proto: Optional[str] = None
    referer: Optional[str] = None
    request_origin: str = "http://localhost:8000"

def is_absolute_url(url: Optional[str]) -> bool:
    """Vrai si l'URL se parse avec un schéma http/https et un hôte."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def ensure_absolute_url(candidate: Optional[str], fallback: Optional[str], default: str) -> str:
    if is_absolute_url(candidate):
        return candidate
    if is_absolute_url(fallback):
        return fallback
    return default


def _first(value: Optional[str]) -> Optional[str]:
    # En-têtes proxy chaînés: "a.example, b.example" -> premier hôte
    if not value:
        return None
    head = value.split(",")[0].strip()
    return head or None


def _hostname(netloc: str) -> str:
    try:
        return (urlparse(f"//{netloc}").hostname or "").lower()
    except ValueError:
        return ""


def is_loopback(netloc: Optional[str]) -> bool:
    host = _hostname(netloc or "")
    return not host or host in LOOPBACK_HOSTS or host.endswith(".localhost")


def _matches_domain(netloc: Optional[str], domain: str) -> bool:
    host = _hostname(netloc or "")
    domain = domain.lower()
    return bool(host) and (host == domain or host.endswith("." + domain))


def _referer_origin(referer: Optional[str]) -> Optional[str]:
    if not is_absolute_url(referer):
        return None
    parsed = urlparse(referer)
    return f"{parsed.scheme}://{parsed.netloc}"


def resolve_base_url(settings: BaseUrlSettings, headers: RequestHeaders) -> str:
    """Retourne l'origine absolue (sans slash final) à communiquer aux passerelles."""
    domain = settings.production_domain
    request_scheme = urlparse(headers.request_origin).scheme or "http"
    forwarded_host = _first(headers.forwarded_host)
    proto = _first(headers.forwarded_proto)
    referer_origin = _referer_origin(headers.referer)
    referer_netloc = urlparse(referer_origin).netloc if referer_origin else None

    if is_absolute_url(settings.public_base_url):
        return settings.public_base_url.rstrip("/")

    if forwarded_host and _matches_domain(forwarded_host, domain):
        return f"{proto or 'https'}://{forwarded_host}"

    if referer_origin and _matches_domain(referer_netloc, domain):
        return referer_origin

    if forwarded_host and not is_loopback(forwarded_host):
        return f"{proto or 'https'}://{forwarded_host}"

    if referer_origin and not is_loopback(referer_netloc):
        return referer_origin

    host = _first(headers.host)
    if host and not is_loopback(host):
        return f"{proto or request_scheme}://{host}"

    if settings.is_production:
        return f"https://{domain}"

    origin = headers.request_origin.rstrip("/")
    if is_loopback(urlparse(origin).netloc):
        logger.warning(
            "payments.base_url using loopback origin=%s for gateway redirects; set PUBLIC_BASE_URL=https://%s",
            origin, domain,
        )
    return origin


def settings_from_config() -> BaseUrlSettings:
    return BaseUrlSettings(
        public_base_url=config.PUBLIC_BASE_URL or None,
        production_domain=config.PRODUCTION_DOMAIN,
        is_production=config.IS_PRODUCTION,
    )


def headers_from_request(request: Request) -> RequestHeaders:
    return RequestHeaders(
        host=request.headers.get("host"),
        forwarded_host=request.headers.get("x-forwarded-host"),
        forwarded_proto=request.headers.get("x-forwarded-proto"),
        referer=request.headers.get("referer"),
        request_origin=f"{request.url.scheme}://{request.url.netloc}",
    )
