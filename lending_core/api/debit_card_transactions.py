"""
Debit card transaction endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, status

from .auth import LendingSystem, get_lending_system, get_current_customer
from .debit_cards import get_owned_card
from .schemas import CreateDebitCardTransactionRequest, DebitCardTransactionModel


router = APIRouter()


@router.get("", response_model=List[DebitCardTransactionModel])
async def list_debit_card_transactions(
    debit_card_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """List transactions of one of the caller's cards"""
    get_owned_card(debit_card_id, customer_id, system)
    transactions = system.debit_card_manager.list_transactions(debit_card_id)
    return [DebitCardTransactionModel.from_transaction(t) for t in transactions]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DebitCardTransactionModel)
async def create_debit_card_transaction(
    request: CreateDebitCardTransactionRequest,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    get_owned_card(request.debit_card_id, customer_id, system)
    transaction = system.debit_card_manager.create_transaction(
        request.debit_card_id, request.amount, request.currency_code
    )
    return DebitCardTransactionModel.from_transaction(transaction)


@router.get("/{transaction_id}", response_model=DebitCardTransactionModel)
async def get_debit_card_transaction(
    transaction_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    transaction = system.debit_card_manager.get_transaction(transaction_id)
    get_owned_card(transaction.debit_card_id, customer_id, system)
    return DebitCardTransactionModel.from_transaction(transaction)
