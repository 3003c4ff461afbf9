"""
Adaptateurs de passerelles de paiement (Stripe carte, Chapa mobile money).
"""
from ..models import Provider
from .base import GatewayAdapter
from .card import CardGatewayAdapter
from .mobile_money import MobileMoneyGatewayAdapter

def get_adapter(provider: Provider) -> GatewayAdapter:
    """Adaptateur correspondant au provider demandé."""
    if provider == Provider.CARD:
        return CardGatewayAdapter()
    return MobileMoneyGatewayAdapter()

__all__ = [
    "GatewayAdapter",
    "CardGatewayAdapter",
    "MobileMoneyGatewayAdapter",
    "get_adapter",
]
