"""
Module 'rails' (feature-first): point d'entrée public des moyens de paiement.
Réunit le débit du solde, le prélèvement ACH (Plaid), le PaymentIntent carte (Stripe)
et la confirmation de trade.
"""

from .balance import pay_with_balance
from .ach import initiate_ach_pull
from .card import create_card_intent, confirm_card_payment, cancel_card_intent
from .trade import execute_trade

__all__ = [
    # balance
    "pay_with_balance",
    # ach
    "initiate_ach_pull",
    # card
    "create_card_intent",
    "confirm_card_payment",
    "cancel_card_intent",
    # trade
    "execute_trade",
]
