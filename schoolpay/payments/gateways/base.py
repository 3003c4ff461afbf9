"""
Contrat commun des adaptateurs de passerelle.
"""
from abc import ABC, abstractmethod

from schoolpay import config
from ..models import CheckoutAttempt, CheckoutUrls, GatewayCheckout, Intent, Subject


class GatewayAdapter(ABC):
    """
    Un adaptateur encapsule le protocole d'une passerelle externe:
    mise en forme de la requête, authentification, lecture de la réponse
    et classification des erreurs propres à la passerelle.
    """

    name = "gateway"

    @abstractmethod
    def ensure_configured(self) -> None:
        """Lève GatewayConfigurationError si les identifiants manquent."""

    @abstractmethod
    def initialize(self, attempt: CheckoutAttempt, subject: Subject, urls: CheckoutUrls) -> GatewayCheckout:
        """Ouvre une session de paiement hébergée; lève une GatewayError en cas d'échec."""


def display_title(intent: Intent) -> str:
    brand = config.CHECKOUT_BRAND_NAME
    return f"{brand} Deposit" if intent == Intent.DEPOSIT else f"{brand} Class Fee"
