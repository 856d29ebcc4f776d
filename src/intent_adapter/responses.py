"""Structured responses returned by provider operations."""

from enum import Enum
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from .database.models import (
    Transaction,
    PaymentProviderCustomer,
    PaymentProviderCustomerPaymentMethod,
)


class ResponseType(str, Enum):
    INIT = "init"
    CHARGE = "charge"
    REFUND = "refund"
    SYNC = "sync"
    SAVE = "save"
    REMOVE = "remove"
    DELETE = "delete"
    PING = "ping"
    UP = "up"
    DOWN = "down"


class BaseResponse(BaseModel):
    """Outcome of an operation: a success flag, a human message and error strings."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: ResponseType
    success: bool = False
    message: str = ""
    errors: List[str] = Field(default_factory=list)


class PaymentResponse(BaseResponse):
    transaction: Optional[Transaction] = None
    # Data the caller needs to complete confirmation in the browser
    client_side_data: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "success": self.success,
            "message": self.message,
            "errors": self.errors,
            "transaction": self.transaction.to_dict() if self.transaction is not None else None,
            "client_side_data": self.client_side_data,
        }


class SimpleResponse(BaseResponse):
    pass


class CustomerResponse(BaseResponse):
    customer: Optional[PaymentProviderCustomer] = None


class PaymentMethodResponse(BaseResponse):
    payment_method: Optional[PaymentProviderCustomerPaymentMethod] = None
