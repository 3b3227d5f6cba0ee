from pydantic import BaseModel
from typing import Optional

class CheckoutRequest(BaseModel):
    price_id: Optional[str] = None

class CheckoutResponse(BaseModel):
    checkout_url: str
