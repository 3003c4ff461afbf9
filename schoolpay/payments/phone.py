"""
Normalisation des numéros de téléphone pour Chapa (format local à 9 chiffres).
Fonction pure: ne lève jamais, ne fabrique jamais de numéro de repli.
"""
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

LOCAL_LENGTH = 9
# Indicatifs reconnus: Éthiopie (251), variante non standard (259), Tanzanie (255)
COUNTRY_CODES = ("251", "259", "255")
_VALID_LOCAL = re.compile(r"^[79]\d{8}$")

def _strip_country_code(digits: str) -> str:
    for code in COUNTRY_CODES:
        intl = "00" + code
        if digits.startswith(intl) and len(digits) >= len(intl) + LOCAL_LENGTH - 1:
            return digits[len(intl):]
        if digits.startswith(code) and len(digits) >= len(code) + LOCAL_LENGTH - 1:
            return digits[len(code):]
    return digits


def normalize_phone(raw: Optional[str]) -> str:
    """
    Convertit un numéro stocké (format libre) vers le format attendu par Chapa.
    - Supprime tout caractère non numérique.
    - Au-delà de 9 chiffres: retire un indicatif reconnu (ex: 251, 00251).
    - Retire ensuite un seul zéro initial.
    - Retourne toujours la chaîne nettoyée; un format douteux est seulement journalisé,
      la validation faisant foi reste celle de la passerelle.
    """
    cleaned = re.sub(r"\D", "", raw or "")
    if len(cleaned) > LOCAL_LENGTH:
        cleaned = _strip_country_code(cleaned)
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]

    if not _VALID_LOCAL.match(cleaned):
        logger.warning(
            "payments.phone.normalize_phone unexpected format raw=%r normalized=%r digits=%s",
            raw, cleaned, len(cleaned),
        )
    return cleaned
