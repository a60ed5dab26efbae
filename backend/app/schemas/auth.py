"""Pydantic schemas for authentication"""
from pydantic import AliasChoices, BaseModel, Field


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str = Field(validation_alias=AliasChoices("password", "secret"))


class LoginRequest(BaseModel):
    # Matched against the field named by LOGIN_IDENTIFIER_FIELD
    identifier: str = Field(validation_alias=AliasChoices("identifier", "email", "username"))
    password: str = Field(validation_alias=AliasChoices("password", "secret"))


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
