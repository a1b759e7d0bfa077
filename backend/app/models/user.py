# user models — auth payloads, user responses, and caller identity
# mirrors frontend api.ts AuthResponse and User

from typing import Optional, Union
from pydantic import BaseModel, Field


# auth

class UserCreate(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="user email address")
    password: str = Field(..., min_length=8, description="plaintext password (min 8 chars)")
    name: Optional[str] = Field(None, description="display name")


class UserLogin(BaseModel):
    email: str
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


# caller identity, resolved from an optional bearer token

class Identified(BaseModel):
    """caller with a valid access token"""
    user_id: str

    model_config = {"frozen": True}

    @property
    def owner_key(self) -> str:
        return self.user_id


class Anonymous(BaseModel):
    """caller without a usable token"""

    model_config = {"frozen": True}

    @property
    def owner_key(self) -> str:
        # shared partition for every anonymous caller
        return "anon"


CallerIdentity = Union[Identified, Anonymous]
