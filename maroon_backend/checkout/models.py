"""
Types du domaine checkout (pydantic v2).
- Montants en Decimal, arrondis à 2 décimales (ROUND_HALF_UP).
- Les taux sont des fractions: 0.035 = 3,5 %, 0.10 = 10 %.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

CENT = Decimal("0.01")


def round2(value) -> Decimal:
    """Arrondi monétaire à 2 décimales, demi vers le haut (jamais de sous-facturation)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class Tier(str, Enum):
    BALANCE = "balance"
    ACH = "ach"
    CARD = "card"


# Ordre de préférence à coût égal: balance > ach > card
TIER_RANK = {Tier.BALANCE: 1, Tier.ACH: 2, Tier.CARD: 3}


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    DEPOSIT_PAID = "deposit_paid"
    CANCELLED = "cancelled"


# Transitions autorisées: jamais de retour vers pending
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.DEPOSIT_PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: set(),
    OrderStatus.DEPOSIT_PAID: {OrderStatus.CANCELLED},
    OrderStatus.CANCELLED: set(),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ORDER_TRANSITIONS.get(OrderStatus(current), set())


class FulfillmentType(str, Enum):
    VAULT = "vault"
    SHIPPING = "shipping"
    PICKUP = "pickup"


class CartLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    sku: str = Field(min_length=1)
    description: str = ""
    metal_type: str = ""
    weight_ozt: Decimal = Decimal("0")
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    extended_price: Optional[Decimal] = Field(default=None, ge=0)
    product_id: Optional[str] = None
    spot_at_order: Optional[Decimal] = None

    @model_validator(mode="before")
    @classmethod
    def _default_extended_price(cls, data):
        if isinstance(data, dict) and data.get("extended_price") is None:
            try:
                extended = round2(Decimal(str(data["unit_price"])) * int(data["quantity"]))
            except (KeyError, TypeError, ValueError, ArithmeticError):
                # Laisse la validation des champs signaler l'erreur
                return data
            data = {**data, "extended_price": extended}
        return data

    @model_validator(mode="after")
    def _check_extended_price(self):
        expected = round2(self.unit_price * self.quantity)
        if self.extended_price != expected:
            raise ValueError(f"extended_price {self.extended_price} != unit_price x quantity ({expected})")
        return self


def cart_total(lines: List[CartLine]) -> Decimal:
    """Somme des prix étendus (jamais stockée)."""
    return round2(sum((line.extended_price for line in lines), Decimal("0")))


class LinkedBank(BaseModel):
    bank_account_id: str
    institution_name: str = ""
    account_mask: str = ""
    account_type: str = ""


class FundingSnapshot(BaseModel):
    customer_id: str
    available_balance: Decimal = Decimal("0")
    cash_balance: Decimal = Decimal("0")
    linked_banks: List[LinkedBank] = Field(default_factory=list)
    kyc_status: str = "unknown"
    al_account_number: str = ""


class DepositBreakdown(BaseModel):
    order_total: Decimal
    deposit_percent: Decimal
    deposit_base: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    deposit_total: Decimal
    wire_amount_due: Decimal
    wire_deadline_hours: int
    # None tant que l'acompte n'est qu'un devis
    wire_due_by: Optional[datetime] = None


class ChargeBreakdown(BaseModel):
    order_total: Decimal
    charge_base: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    charge_total: Decimal
    deposit_base: Optional[Decimal] = None
    wire_amount_due: Optional[Decimal] = None


class WireInstructions(BaseModel):
    bank_name: str
    bank_address: str
    routing_number: str
    account_number: str
    beneficiary_name: str
    beneficiary_address: str
    memo: str


class PaymentMethodOption(BaseModel):
    tier: Tier
    tier_rank: int
    name: str
    description: str
    available: Optional[Decimal] = None
    sufficient: bool
    fee_percent: Decimal = Decimal("0")
    fee_amount: Decimal = Decimal("0")
    recommended: bool = False
    linked_bank: Optional[LinkedBank] = None
    deposit_breakdown: Optional[DepositBreakdown] = None
    is_deposit_flow: bool = False
    is_deposit_only: bool = False
    max_full_payment: Optional[Decimal] = None
    savings_with_bank: Optional[Decimal] = None
    bank_nudge: Optional[str] = None

    @property
    def is_deposit(self) -> bool:
        return self.is_deposit_flow or self.is_deposit_only


class MethodResolution(BaseModel):
    cart_total: Decimal
    methods: List[PaymentMethodOption]
    has_linked_bank: bool
    linked_banks: List[LinkedBank] = Field(default_factory=list)
    needs_funding: bool
    funding_shortfall: Decimal
    al_account_number: str = ""
    kyc_status: str = "unknown"
    fund_prompt: Optional[str] = None

    def option(self, tier: Tier) -> Optional[PaymentMethodOption]:
        return next((m for m in self.methods if m.tier == Tier(tier)), None)

    @property
    def recommended(self) -> Optional[PaymentMethodOption]:
        return next((m for m in self.methods if m.recommended and m.sufficient), None)


class TradeStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TradeConfirmation(BaseModel):
    status: TradeStatus
    confirmation: Optional[str] = None
    error: Optional[str] = None
    busted_items: List[str] = Field(default_factory=list)


class Order(BaseModel):
    id: str
    order_number: str
    customer_id: str
    lines: List[CartLine] = Field(default_factory=list)
    total: Decimal
    fulfillment_type: FulfillmentType = FulfillmentType.VAULT
    status: OrderStatus = OrderStatus.PENDING
    payment_method: Optional[Tier] = None
    amount_paid: Optional[Decimal] = None
    payment_intent_id: Optional[str] = None
    ach_transfer_id: Optional[str] = None
    deposit_breakdown: Optional[DepositBreakdown] = None
    trade_confirmation: Optional[TradeConfirmation] = None


class BalancePayment(BaseModel):
    amount_paid: Decimal
    new_balance: Decimal
    transaction_id: Optional[str] = None


class AchPull(BaseModel):
    transfer_id: str
    authorization_id: Optional[str] = None
    amount: Decimal
    is_deposit: bool
    linked_bank: LinkedBank
    deposit_breakdown: Optional[DepositBreakdown] = None
    wire_instructions: Optional[WireInstructions] = None


class CardIntent(BaseModel):
    payment_intent_id: str
    client_token: str
    is_deposit: bool
    charge_breakdown: ChargeBreakdown


class CardConfirmation(BaseModel):
    settled: bool
    order_id: str
    payment_intent_id: str
    is_deposit: bool
    amount_charged: Decimal
    already_processed: bool = False
    al_account_number: str = ""
    deposit_breakdown: Optional[DepositBreakdown] = None
    wire_instructions: Optional[WireInstructions] = None
    trade_confirmation: Optional[TradeConfirmation] = None


class PaymentAttempt(BaseModel):
    """Tentative en cours (une seule à la fois), jamais persistée."""
    tier: Tier
    bank_account_id: Optional[str] = None
    is_deposit: bool = False
    payment_intent_id: Optional[str] = None
    client_token: Optional[str] = None
    charge_breakdown: Optional[ChargeBreakdown] = None
    ach_transfer_id: Optional[str] = None
    ach_authorization_id: Optional[str] = None
    confirmed: bool = False


class SettlementResult(BaseModel):
    tier: Tier
    amount_paid: Decimal
    is_deposit: bool = False
    new_balance: Optional[Decimal] = None
    linked_bank: Optional[LinkedBank] = None
    deposit_breakdown: Optional[DepositBreakdown] = None
    wire_instructions: Optional[WireInstructions] = None
    trade_confirmation: Optional[TradeConfirmation] = None
    already_processed: bool = False
