# schemas/auth.py - Authenticated User Schemas
# ============================================================================
from pydantic import BaseModel
from typing import Optional

class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str]
    organization_id: Optional[int]
    plan: str
    credits_balance: int

    class Config:
        from_attributes = True
