"""
Accès aux données du ledger 'payment_checkout' (une ligne par tentative).

Contrairement aux lectures de confort, les écritures du ledger ne sont jamais
avalées: une erreur est journalisée puis relevée, le ledger restant la source
de vérité de « ce qui a été tenté ».
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

import schoolpay.infra.supabase_client as supabase_client
from .exceptions import LedgerStateError
from .models import (
    CheckoutAttempt,
    CheckoutStatus,
    IN_FLIGHT_STATUSES,
    can_transition,
    utcnow,
)

logger = logging.getLogger(__name__)

TABLE = "payment_checkout"

# module schoolpay.payments.repository
def _table():
    return supabase_client.get_service_supabase().table(TABLE)


def _first_row(res) -> Optional[Dict[str, Any]]:
    rows = getattr(res, "data", None) or []
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None


def create_attempt(attempt: CheckoutAttempt) -> CheckoutAttempt:
    """
    Insère la tentative en statut 'initialized' (avant tout appel réseau).
    - Retourne la ligne telle que stockée (ou l'objet fourni si l'insert ne renvoie rien).
    """
    if attempt.status != CheckoutStatus.INITIALIZED:
        raise LedgerStateError(f"New checkout must start as initialized (got {attempt.status.value})")
    try:
        res = _table().insert(attempt.to_row()).execute()
    except Exception:
        logger.exception("payments.repository.create_attempt failed tx_ref=%s", attempt.tx_ref)
        raise
    row = _first_row(res)
    return CheckoutAttempt.from_row(row) if row else attempt


def get_attempt(tx_ref: str) -> Optional[CheckoutAttempt]:
    """Lecture par tx_ref; None si absente."""
    if not tx_ref:
        return None
    res = _table().select("*").eq("tx_ref", tx_ref).limit(1).execute()
    row = _first_row(res)
    return CheckoutAttempt.from_row(row) if row else None


def _advance(
    tx_ref: str,
    target: CheckoutStatus,
    changes: Dict[str, Any],
    metadata_patch: Optional[Dict[str, Any]] = None,
) -> CheckoutAttempt:
    current = get_attempt(tx_ref)
    if current is None:
        raise LedgerStateError(f"Checkout {tx_ref} not found in ledger", tx_ref=tx_ref)
    if not can_transition(current.status, target):
        raise LedgerStateError(
            f"Illegal checkout transition {current.status.value} -> {target.value}",
            tx_ref=tx_ref,
        )
    changes = dict(changes)
    if metadata_patch:
        changes["metadata"] = {**current.metadata, **metadata_patch}
    payload = dict(changes)
    payload["status"] = target.value
    payload["updated_at"] = utcnow().isoformat()
    try:
        res = (
            _table()
            .update(payload)
            .eq("tx_ref", tx_ref)
            .eq("status", current.status.value)
            .execute()
        )
    except Exception:
        logger.exception("payments.repository._advance failed tx_ref=%s target=%s", tx_ref, target.value)
        raise
    row = _first_row(res)
    if row:
        return CheckoutAttempt.from_row(row)

    # Aucune ligne modifiée: un autre écrivain a pu déplacer la tentative entre-temps
    stored = get_attempt(tx_ref)
    if stored is None or stored.status != target:
        found = stored.status.value if stored else "missing"
        logger.warning(
            "payments.repository._advance lost race tx_ref=%s expected=%s found=%s",
            tx_ref, target.value, found,
        )
        raise LedgerStateError(
            f"Checkout {tx_ref} was not moved to {target.value} (ledger has {found})",
            tx_ref=tx_ref,
        )
    return stored


def mark_pending(tx_ref: str, checkout_url: str, extra_metadata: Optional[Dict[str, Any]] = None) -> CheckoutAttempt:
    """initialized -> pending avec l'URL de paiement renvoyée par la passerelle."""
    if not checkout_url:
        raise LedgerStateError("A pending checkout requires a checkout URL", tx_ref=tx_ref)
    return _advance(tx_ref, CheckoutStatus.PENDING, {"checkout_url": checkout_url}, extra_metadata)


def mark_failed(
    tx_ref: str,
    error: str,
    error_code: str,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> CheckoutAttempt:
    """
    Passe la tentative en 'failed' en conservant le diagnostic dans metadata
    (error, errorCode, errorAt + éventuel extrait brut).
    """
    patch = dict(extra_metadata or {})
    patch.update({"error": error, "errorCode": error_code, "errorAt": utcnow().isoformat()})
    return _advance(tx_ref, CheckoutStatus.FAILED, {}, patch)


def find_in_flight_duplicate(
    subject_id: int,
    amount: Decimal,
    currency: str,
    since: datetime,
) -> Optional[CheckoutAttempt]:
    """
    Tentative 'initialized'/'pending' du même élève, montant et devise, créée après `since`.
    - Une ligne restée 'initialized' (crash) bloque jusqu'à sortir de la fenêtre.
    """
    res = (
        _table()
        .select("*")
        .eq("student_id", subject_id)
        .eq("amount", str(amount))
        .eq("currency", currency)
        .in_("status", [s.value for s in IN_FLIGHT_STATUSES])
        .gte("created_at", since.isoformat())
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    row = _first_row(res)
    return CheckoutAttempt.from_row(row) if row else None
