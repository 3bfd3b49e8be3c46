"""
Authentication endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_system
from .schemas import (
    AccountOut, CustomerOut, LoginRequest, LoginResponse, RefreshRequest,
    RefreshResponse, RegisterRequest, RegisterResponse
)


router = APIRouter()


@router.post("/register", response_model=RegisterResponse,
             response_model_exclude_none=True, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, system: LedgerSystem = Depends(get_system)):
    """Register a customer with a SAVINGS account"""
    registration = system.auth.register(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password
    )
    return RegisterResponse(
        user=CustomerOut.from_customer(registration.customer, with_flags=True),
        account=AccountOut.from_account(registration.account)
    )


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
def login(request: LoginRequest, system: LedgerSystem = Depends(get_system)):
    """Exchange credentials for access and refresh tokens"""
    result = system.auth.login(request.email, request.password)
    return LoginResponse(
        user=CustomerOut.from_customer(result.customer, with_flags=True),
        access_token=result.access_token,
        refresh_token=result.refresh_token
    )


@router.post("/refresh", response_model=RefreshResponse)
def refresh(request: RefreshRequest, system: LedgerSystem = Depends(get_system)):
    """Issue a new access token from a refresh token"""
    return RefreshResponse(access_token=system.auth.refresh(request.refresh_token))
