from pydantic import BaseModel
from typing import List, Optional


class LoginRequest(BaseModel):
    identifier: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    username: str
    email: str
    name: Optional[str] = None
    roles: List[str]
