"""
Types du checkout: enums, ligne du ledger (CheckoutAttempt), corps de requête entrant.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import ValidationError

# module schoolpay.payments.models
class Provider(str, Enum):
    CARD = "stripe"
    MOBILE_MONEY = "chapa"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Provider":
        """
        Accepte les jetons publics ("card", "mobileMoney") et les noms de passerelle.
        - Insensible à la casse; lève ValidationError sinon.
        """
        token = (raw or "").strip().lower().replace("-", "_")
        aliases = {
            "card": cls.CARD,
            "stripe": cls.CARD,
            "mobilemoney": cls.MOBILE_MONEY,
            "mobile_money": cls.MOBILE_MONEY,
            "chapa": cls.MOBILE_MONEY,
        }
        if not token:
            raise ValidationError("Provider is required")
        if token not in aliases:
            raise ValidationError("Unsupported provider", details={"provider": raw})
        return aliases[token]


class Intent(str, Enum):
    TUITION = "tuition"
    DEPOSIT = "deposit"

    @classmethod
    def from_mode(cls, mode: Optional[str]) -> "Intent":
        return cls.DEPOSIT if (mode or "").lower() == "deposit" else cls.TUITION


class CheckoutStatus(str, Enum):
    INITIALIZED = "initialized"
    PENDING = "pending"
    FAILED = "failed"
    SUCCEEDED = "succeeded"
    EXPIRED = "expired"


IN_FLIGHT_STATUSES = (CheckoutStatus.INITIALIZED, CheckoutStatus.PENDING)

# Transitions autorisées: le ledger n'avance que vers l'avant
_TRANSITIONS = {
    CheckoutStatus.INITIALIZED: {CheckoutStatus.PENDING, CheckoutStatus.FAILED},
    CheckoutStatus.PENDING: {CheckoutStatus.FAILED, CheckoutStatus.SUCCEEDED, CheckoutStatus.EXPIRED},
    CheckoutStatus.FAILED: set(),
    CheckoutStatus.SUCCEEDED: set(),
    CheckoutStatus.EXPIRED: set(),
}


def can_transition(current: CheckoutStatus, target: CheckoutStatus) -> bool:
    return target in _TRANSITIONS.get(CheckoutStatus(current), set())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutAttempt(BaseModel):
    """Une ligne du ledger 'payment_checkout' (une tentative d'initialisation)."""

    tx_ref: str
    subject_id: int
    provider: Provider
    intent: Intent = Intent.TUITION
    amount: Decimal
    currency: str
    status: CheckoutStatus = CheckoutStatus.INITIALIZED
    checkout_url: Optional[str] = None
    months: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    return_url: Optional[str] = None
    callback_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CheckoutAttempt":
        """Construit l'objet depuis une ligne Supabase (colonnes snake_case)."""
        return cls(
            tx_ref=row["tx_ref"],
            subject_id=int(row["student_id"]),
            provider=Provider(row["provider"]),
            intent=Intent(row.get("intent") or Intent.TUITION.value),
            amount=Decimal(str(row["amount"])),
            currency=row["currency"],
            status=CheckoutStatus(row["status"]),
            checkout_url=row.get("checkout_url"),
            months=list(row.get("months") or []),
            metadata=dict(row.get("metadata") or {}),
            return_url=row.get("return_url"),
            callback_url=row.get("callback_url"),
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "tx_ref": self.tx_ref,
            "student_id": self.subject_id,
            "provider": self.provider.value,
            "intent": self.intent.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "checkout_url": self.checkout_url,
            "months": list(self.months),
            "metadata": dict(self.metadata),
            "return_url": self.return_url,
            "callback_url": self.callback_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class CheckoutRequest(BaseModel):
    """
    Corps JSON de POST /api/v1/payments/checkout.
    - provider: "card" | "mobileMoney" (alias "stripe" | "chapa")
    - studentId ou chatId (au moins l'un des deux)
    - months: les entrées non textuelles sont ignorées
    """

    provider: Optional[str] = None
    studentId: Optional[int] = None
    chatId: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    months: List[Any] = Field(default_factory=list)
    returnUrl: Optional[str] = None
    callbackUrl: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    mode: Optional[str] = None

    @field_validator("months", mode="before")
    @classmethod
    def _sanitize_months(cls, v):
        if not isinstance(v, list):
            return []
        return [m for m in v if isinstance(m, str) and m]

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, v):
        return v if isinstance(v, dict) else {}


class Subject(BaseModel):
    """Vue minimale d'un élève (collaborateur 'students')."""

    id: int
    name: Optional[str] = None
    phone: Optional[str] = None
    chat_id: Optional[str] = None
    default_fee: Optional[Decimal] = None
    default_currency: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Subject":
        fee = row.get("classfee")
        return cls(
            id=int(row["id"]),
            name=row.get("name"),
            phone=row.get("phoneno"),
            chat_id=row.get("chat_id"),
            default_fee=Decimal(str(fee)) if fee is not None else None,
            default_currency=row.get("classfee_currency"),
        )


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after: Optional[int] = None


class CheckoutUrls(BaseModel):
    """URLs absolues résolues pour une tentative (callback réservé à Stripe)."""

    base_url: str
    return_url: str
    callback_url: Optional[str] = None


class GatewayCheckout(BaseModel):
    """Résultat d'une initialisation réussie côté passerelle."""

    checkout_url: str
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
