"""
Pydantic schemas for API requests and responses
"""

from pydantic import BaseModel, Field

from .accounts import ACCOUNT_NUMBER_LIMIT


# Account schemas
class CreateAccountRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


# Auth schemas
class LoginRequest(BaseModel):
    number: int = Field(..., ge=0, lt=ACCOUNT_NUMBER_LIMIT, description="Account number")
    password: str


class LoginResponse(BaseModel):
    number: int
    token: str


# Transfer schemas
class TransferRequest(BaseModel):
    to_account: int = Field(..., description="Destination account number")
    amount: int
