"""
Debit Card Module

Customers hold debit cards that can be activated, deactivated and
soft-deleted, and that record card transactions. A card with transactions
cannot be deleted.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, date
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import secrets
import uuid

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency
from .exceptions import (
    ValidationError, DebitCardNotFoundError, DebitCardTransactionNotFoundError,
    DebitCardInUseError
)
from .logging_config import get_logger, log_action
from .schedule import add_months
from .storage import StorageInterface, StorageRecord
from .validation import require_positive_int


logger = get_logger("lending.debit_cards")


class DebitCardType(Enum):
    """Card networks issued"""
    VISA = "VISA"
    MASTERCARD = "MASTERCARD"
    AMEX = "AMEX"


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class DebitCard(StorageRecord):
    """Debit card owned by a customer"""
    customer_id: str
    number: str
    card_type: DebitCardType
    expiration_date: date
    disabled_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.disabled_at is None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'customer_id': self.customer_id,
            'number': self.number,
            'card_type': self.card_type.value,
            'expiration_date': self.expiration_date.isoformat(),
            'disabled_at': self.disabled_at.isoformat() if self.disabled_at else None,
            'deleted_at': self.deleted_at.isoformat() if self.deleted_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DebitCard':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            number=data['number'],
            card_type=DebitCardType(data['card_type']),
            expiration_date=date.fromisoformat(data['expiration_date']),
            disabled_at=_optional_datetime(data.get('disabled_at')),
            deleted_at=_optional_datetime(data.get('deleted_at'))
        )


@dataclass
class DebitCardTransaction(StorageRecord):
    """Purchase or withdrawal made with a debit card"""
    debit_card_id: str
    amount: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'debit_card_id': self.debit_card_id,
            'amount': self.amount.amount,
            'currency': self.amount.currency.code
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DebitCardTransaction':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            debit_card_id=data['debit_card_id'],
            amount=Money(data['amount'], Currency.from_code(data['currency']))
        )


def generate_card_number() -> str:
    """Random 16-digit card number"""
    return "".join(str(secrets.randbelow(10)) for _ in range(16))


class DebitCardManager:
    """Manages debit cards and their transactions"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

        self.cards_table = "debit_cards"
        self.transactions_table = "debit_card_transactions"

    def create_card(self, customer_id: str, card_type: Union[str, DebitCardType]) -> DebitCard:
        """Issue a new active card"""
        if not customer_id:
            raise ValidationError("customer_id is required")
        try:
            card_type = DebitCardType(card_type)
        except ValueError:
            raise ValidationError(f"Unsupported debit card type: {card_type!r}")

        now = datetime.now(timezone.utc)
        card = DebitCard(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            number=generate_card_number(),
            card_type=card_type,
            expiration_date=add_months(now.date(), 12 * get_config().debit_card_validity_years)
        )

        with self.storage.atomic():
            self._save_card(card)
            self.audit_trail.log_event(
                event_type=AuditEventType.DEBIT_CARD_CREATED,
                entity_type="debit_card",
                entity_id=card.id,
                user_id=customer_id,
                metadata={"card_type": card.card_type, "expiration_date": card.expiration_date}
            )

        log_action(logger, "info", "Debit card created", user_id=customer_id,
                   action="create_debit_card", resource=f"debit_card:{card.id}")
        return card

    def get_card(self, card_id: str) -> Optional[DebitCard]:
        """Get a card by ID; deleted cards are not returned"""
        data = self.storage.load(self.cards_table, card_id)
        if not data:
            return None
        card = DebitCard.from_dict(data)
        return None if card.is_deleted else card

    def list_cards(self, customer_id: str) -> List[DebitCard]:
        """Cards of a customer, oldest first"""
        cards = [DebitCard.from_dict(d) for d in self.storage.find(self.cards_table, {"customer_id": customer_id})]
        cards = [card for card in cards if not card.is_deleted]
        cards.sort(key=lambda card: card.created_at)
        return cards

    def set_active(self, card_id: str, is_active: bool) -> DebitCard:
        """Activate (clear disabled_at) or deactivate (stamp disabled_at) a card"""
        if not isinstance(is_active, bool):
            raise ValidationError(f"is_active must be a boolean, got {is_active!r}")

        with self.storage.atomic():
            card = self._require_card(card_id)
            now = datetime.now(timezone.utc)
            if is_active:
                card.disabled_at = None
                event_type = AuditEventType.DEBIT_CARD_ACTIVATED
            else:
                card.disabled_at = card.disabled_at or now
                event_type = AuditEventType.DEBIT_CARD_DEACTIVATED
            card.updated_at = now
            self._save_card(card)
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="debit_card",
                entity_id=card.id,
                user_id=card.customer_id,
                metadata={"is_active": is_active}
            )

        return card

    def delete_card(self, card_id: str) -> None:
        """
        Soft-delete a card

        Raises:
            DebitCardInUseError: The card already has transactions
        """
        with self.storage.atomic():
            card = self._require_card(card_id)
            if self.storage.find(self.transactions_table, {"debit_card_id": card_id}):
                log_action(logger, "warning", "Refused to delete debit card with transactions",
                           user_id=card.customer_id, action="delete_debit_card",
                           resource=f"debit_card:{card_id}")
                raise DebitCardInUseError(f"Debit card {card_id} has transactions and cannot be deleted")

            now = datetime.now(timezone.utc)
            card.deleted_at = now
            card.updated_at = now
            self._save_card(card)
            self.audit_trail.log_event(
                event_type=AuditEventType.DEBIT_CARD_DELETED,
                entity_type="debit_card",
                entity_id=card.id,
                user_id=card.customer_id
            )

    def create_transaction(self, card_id: str, amount: int,
                           currency_code: Union[str, Currency]) -> DebitCardTransaction:
        """Record a transaction on an active card"""
        require_positive_int(amount, "amount")
        currency = Currency.from_code(currency_code)

        with self.storage.atomic():
            card = self._require_card(card_id)
            if not card.is_active:
                raise ValidationError(f"Debit card {card_id} is disabled")

            now = datetime.now(timezone.utc)
            transaction = DebitCardTransaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                debit_card_id=card.id,
                amount=Money(amount, currency)
            )
            self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.DEBIT_CARD_TRANSACTION_CREATED,
                entity_type="debit_card_transaction",
                entity_id=transaction.id,
                user_id=card.customer_id,
                metadata={"debit_card_id": card.id, "amount": transaction.amount.to_string()}
            )

        return transaction

    def list_transactions(self, card_id: str) -> List[DebitCardTransaction]:
        """Transactions of a card, oldest first"""
        data = self.storage.find(self.transactions_table, {"debit_card_id": card_id})
        transactions = [DebitCardTransaction.from_dict(d) for d in data]
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    def get_transaction(self, transaction_id: str) -> DebitCardTransaction:
        data = self.storage.load(self.transactions_table, transaction_id)
        if not data:
            raise DebitCardTransactionNotFoundError(f"Debit card transaction {transaction_id} not found")
        return DebitCardTransaction.from_dict(data)

    def _require_card(self, card_id: str) -> DebitCard:
        card = self.get_card(card_id)
        if card is None:
            raise DebitCardNotFoundError(f"Debit card {card_id} not found")
        return card

    def _save_card(self, card: DebitCard) -> None:
        self.storage.save(self.cards_table, card.id, card.to_dict())
