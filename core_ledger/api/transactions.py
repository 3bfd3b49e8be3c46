"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import LedgerSystem, get_current_customer, get_system
from .schemas import (
    DepositRequest, DepositResponse, PaginationOut, TransactionListResponse,
    TransactionOut, TransactionResponse, TransferRequest, TransferResponse,
    WithdrawRequest, WithdrawResponse
)
from ..customers import Customer


router = APIRouter()


@router.post("/deposit", response_model=DepositResponse, response_model_exclude_none=True)
def deposit(
    request: DepositRequest,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
):
    """Deposit into one of the caller's accounts"""
    result = system.engine.deposit(
        actor_customer_id=customer.id,
        account_number=request.account_number,
        amount=request.amount,
        narration=request.narration
    )
    return DepositResponse.from_result(result)


@router.post("/withdraw", response_model=WithdrawResponse, response_model_exclude_none=True)
def withdraw(
    request: WithdrawRequest,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
):
    """Withdraw from one of the caller's accounts"""
    result = system.engine.withdraw(
        actor_customer_id=customer.id,
        account_number=request.account_number,
        amount=request.amount,
        narration=request.narration
    )
    return WithdrawResponse.from_result(result)


@router.post("/transfer", response_model=TransferResponse, response_model_exclude_none=True)
def transfer(
    request: TransferRequest,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
):
    """Transfer from one of the caller's accounts to any active account"""
    result = system.engine.transfer(
        actor_customer_id=customer.id,
        from_account_number=request.from_account_number,
        to_account_number=request.to_account_number,
        amount=request.amount,
        narration=request.narration
    )
    return TransferResponse.from_result(result)


@router.get("/account/{account_number}", response_model=TransactionListResponse,
            response_model_exclude_none=True)
def list_account_transactions(
    account_number: str,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
):
    """Page through an account's transactions, newest first"""
    result = system.engine.list_transactions(customer.id, account_number, page, limit)
    return TransactionListResponse(
        results=[TransactionOut.from_transaction(t) for t in result.transactions],
        pagination=PaginationOut.from_page_info(result.page_info)
    )


@router.get("/{transaction_id}", response_model=TransactionResponse,
            response_model_exclude_none=True)
def get_transaction(
    transaction_id: str,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
):
    """Get a transaction that touches one of the caller's accounts"""
    transaction = system.engine.get_transaction_by_id(customer.id, transaction_id)
    return TransactionResponse(transaction=TransactionOut.from_transaction(transaction))
