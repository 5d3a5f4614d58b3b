"""
Admin API schemas.
"""
from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str
    user: dict


class UserInfo(BaseModel):
    username: str


class UserCreateIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    welcome_tokens: int = Field(default=0, ge=0, le=100_000)


class UserCreatedOut(BaseModel):
    id: str
    email: str
    name: str | None
    tokens: int
    access_token: str
