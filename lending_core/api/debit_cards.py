"""
Debit card endpoints
"""

from typing import List
from fastapi import APIRouter, HTTPException, Depends, Response, status

from .auth import LendingSystem, get_lending_system, get_current_customer
from .schemas import CreateDebitCardRequest, UpdateDebitCardRequest, DebitCardModel
from ..debit_cards import DebitCard


router = APIRouter()


def get_owned_card(card_id: str, customer_id: str, system: LendingSystem) -> DebitCard:
    """Load a card, answering 404 if missing and 403 if another customer's"""
    card = system.debit_card_manager.get_card(card_id)
    if not card:
        raise HTTPException(status_code=404, detail="Debit card not found")
    if card.customer_id != customer_id:
        raise HTTPException(status_code=403, detail="Debit card belongs to another customer")
    return card


@router.get("", response_model=List[DebitCardModel])
async def list_debit_cards(
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """List the caller's debit cards"""
    return [DebitCardModel.from_card(c) for c in system.debit_card_manager.list_cards(customer_id)]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DebitCardModel)
async def create_debit_card(
    request: CreateDebitCardRequest,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Issue a debit card to the caller"""
    card = system.debit_card_manager.create_card(customer_id, request.type)
    return DebitCardModel.from_card(card)


@router.get("/{card_id}", response_model=DebitCardModel)
async def get_debit_card(
    card_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    return DebitCardModel.from_card(get_owned_card(card_id, customer_id, system))


@router.put("/{card_id}", response_model=DebitCardModel)
async def update_debit_card(
    card_id: str,
    request: UpdateDebitCardRequest,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Activate or deactivate a debit card"""
    get_owned_card(card_id, customer_id, system)
    card = system.debit_card_manager.set_active(card_id, request.is_active)
    return DebitCardModel.from_card(card)


@router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_debit_card(
    card_id: str,
    customer_id: str = Depends(get_current_customer),
    system: LendingSystem = Depends(get_lending_system)
):
    """Delete a debit card that has no transactions"""
    get_owned_card(card_id, customer_id, system)
    system.debit_card_manager.delete_card(card_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
