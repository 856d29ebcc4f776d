"""Gateway customers mapped to internal user identities."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .database.models import PaymentProviderCustomer
from .database.repository import PaymentProviderCustomerRepository
from .gateway import PaymentGateway, CustomerObject, GatewayError
from .orders import CustomerData
from .responses import CustomerResponse, ResponseType

logger = logging.getLogger(__name__)


class CustomerService:
    """Creates, finds and deletes the gateway customer behind a (user_type, user_id)."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        payment_provider: str,
        tenant_id: Optional[str] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.payment_provider = payment_provider
        self.tenant_id = tenant_id
        self.customers = PaymentProviderCustomerRepository(session)

    async def get(self, customer_data: CustomerData) -> Optional[PaymentProviderCustomer]:
        """Return the local mapping for the identity, if one exists."""
        if customer_data.is_guest():
            return None
        return await self.customers.get_by_user(
            self.payment_provider, customer_data.user_type, customer_data.user_id
        )

    async def to_payment_provider_customer_or_create(
        self, customer_data: CustomerData
    ) -> Optional[PaymentProviderCustomer]:
        """
        Return the mapped customer, creating it at the gateway first if needed.

        Args:
            customer_data: Identity to map. Guests are never mapped.

        Returns:
            The PaymentProviderCustomer, or None for guests.

        Raises:
            GatewayError: if the gateway customer cannot be created.
        """
        if customer_data.is_guest():
            return None

        customer = await self.get(customer_data)
        if customer is not None:
            return customer

        metadata = {
            "tenant_id": self.tenant_id,
            "user_type": customer_data.user_type,
            "user_id": customer_data.user_id,
        }
        params = {"metadata": {k: v for k, v in metadata.items() if v is not None}}
        if customer_data.email:
            params["email"] = customer_data.email
        gateway_customer = self.gateway.create_customer(params)

        existing = await self.customers.get_by_customer_id(self.payment_provider, gateway_customer.id)
        if existing is not None:
            return existing
        return await self.customers.create(
            payment_provider=self.payment_provider,
            payment_provider_customer_id=gateway_customer.id,
            user_type=customer_data.user_type,
            user_id=customer_data.user_id,
            tenant_id=self.tenant_id,
        )

    async def create(self, customer_data: CustomerData) -> CustomerResponse:
        response = CustomerResponse(type=ResponseType.SAVE)
        if customer_data.is_guest():
            response.message = "Incorrect usage"
            response.errors = ["Customer was not specified"]
            return response

        try:
            customer = await self.to_payment_provider_customer_or_create(customer_data)
        except GatewayError as e:
            logger.error(f"Could not create customer for {customer_data.user_type}:{customer_data.user_id}: {e}")
            response.message = "There was an issue"
            response.errors = ["Could not create or retrieve customer"]
            return response

        response.customer = customer
        response.success = True
        return response

    async def delete(self, customer: PaymentProviderCustomer) -> CustomerResponse:
        """Remove the customer at the gateway, then delete the local records."""
        response = CustomerResponse(type=ResponseType.DELETE, customer=customer)
        try:
            self.gateway.delete_customer(customer.payment_provider_customer_id)
        except GatewayError as e:
            logger.error(f"Could not delete gateway customer {customer.payment_provider_customer_id}: {e}")
            response.message = "There was an issue while deleting the customer"
            response.errors = ["Could not delete customer"]
            return response

        await self.customers.delete(customer)
        response.success = True
        return response

    async def webhook_deleted(self, gateway_customer: CustomerObject) -> bool:
        """Delete the local mapping of a customer deleted at the gateway.

        Returns:
            False when the object is not flagged deleted, True otherwise,
            including when no local mapping exists.
        """
        if gateway_customer.deleted is not True:
            return False

        customer = await self.customers.get_by_customer_id(self.payment_provider, gateway_customer.id)
        if customer is None:
            return True
        await self.customers.delete(customer)
        return True
