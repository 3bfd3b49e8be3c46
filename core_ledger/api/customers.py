"""
Customer account endpoints

Every route is scoped to the caller; an account the caller does not own is
reported as not found.
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_current_customer, get_owned_account, get_system
from .schemas import AccountOut, AccountResponse, CreateAccountRequest, UpdateAccountRequest
from ..accounts import Account, AccountStatus, AccountType
from ..currency import Currency
from ..customers import Customer
from ..errors import BadRequestError


router = APIRouter()


@router.post("/sub-account", response_model=AccountResponse,
             response_model_exclude_none=True, status_code=status.HTTP_201_CREATED)
def create_sub_account(
    request: CreateAccountRequest,
    customer: Customer = Depends(get_current_customer),
    system: LedgerSystem = Depends(get_system)
):
    """Open another account for the caller"""
    currency = system.default_currency
    if request.currency:
        try:
            currency = Currency.from_code(request.currency)
        except ValueError as e:
            raise BadRequestError(str(e), field="currency")

    account = system.accounts.create_account(
        customer_id=customer.id,
        account_type=AccountType(request.account_type),
        currency=currency
    )
    return AccountResponse(
        message="New account created successfully",
        account=AccountOut.from_account(account)
    )


@router.get("/{account_number}", response_model=AccountResponse,
            response_model_exclude_none=True)
def get_account_details(account: Account = Depends(get_owned_account)):
    """Get one of the caller's accounts"""
    return AccountResponse(
        message="Account details retrieved successfully",
        account=AccountOut.from_account(account)
    )


@router.put("/{account_number}", response_model=AccountResponse,
            response_model_exclude_none=True)
def update_account(
    request: UpdateAccountRequest,
    account: Account = Depends(get_owned_account),
    system: LedgerSystem = Depends(get_system)
):
    """Change the type and/or status of one of the caller's accounts"""
    updated = system.accounts.update_account(
        account.id,
        account_type=AccountType(request.account_type) if request.account_type else None,
        status=AccountStatus(request.status) if request.status else None
    )
    return AccountResponse(
        message="Account updated successfully",
        account=AccountOut.from_account(updated, full=True)
    )


@router.delete("/{account_number}", response_model=AccountResponse,
               response_model_exclude_none=True)
def close_account(
    account: Account = Depends(get_owned_account),
    system: LedgerSystem = Depends(get_system)
):
    """Close one of the caller's accounts"""
    closed = system.accounts.close_account(account.id)
    return AccountResponse(
        message="Account closed successfully",
        account=AccountOut.from_account(closed, full=True)
    )
