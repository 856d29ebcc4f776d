"""Value types describing what is being paid for and who is paying."""

from typing import Optional

from pydantic import BaseModel, Field

GUEST_USER_TYPE = "guest"


class Order(BaseModel):
    """The business object being paid for."""
    orderable_id: str = Field(..., description="Identifier of the order in the host system")
    amount: int = Field(..., ge=0, description="Total due in minor units")
    currency: str = Field(..., min_length=3, max_length=3)
    description: Optional[str] = None


class CustomerData(BaseModel):
    """Identity of the customer on whose behalf a payment is made."""
    user_type: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None

    def is_guest(self) -> bool:
        return self.user_type in (None, GUEST_USER_TYPE) or not self.user_id
