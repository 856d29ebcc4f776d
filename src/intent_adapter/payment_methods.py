"""Saved payment methods of gateway customers."""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from .customers import CustomerService
from .database.models import PaymentProviderCustomer, PaymentProviderCustomerPaymentMethod
from .database.repository import PaymentProviderCustomerRepository, PaymentMethodRepository
from .gateway import PaymentGateway, PaymentMethodObject, GatewayError
from .orders import CustomerData
from .responses import PaymentMethodResponse, ResponseType

logger = logging.getLogger(__name__)


class PaymentMethodService:
    """Saves, removes and mirrors the card payment methods of one customer."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        payment_provider: str,
        customers: CustomerService,
        customer_data: Optional[CustomerData] = None,
        tenant_id: Optional[str] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.payment_provider = payment_provider
        self.customer_service = customers
        self.customer_data = customer_data
        self.tenant_id = tenant_id
        self.customers = PaymentProviderCustomerRepository(session)
        self.payment_methods = PaymentMethodRepository(session)

    async def init(self, data: Optional[Dict[str, Any]] = None) -> PaymentMethodResponse:
        # Payment methods are saved from a confirmed intent; nothing to set up.
        return PaymentMethodResponse(type=ResponseType.INIT, success=True)

    async def save(self, data: Dict[str, Any]) -> PaymentMethodResponse:
        """
        Attach a payment method to the customer at the gateway and store it.

        Args:
            data: Must contain ``payment_method_id``.

        Returns:
            PaymentMethodResponse with the stored payment method on success.
        """
        response = PaymentMethodResponse(type=ResponseType.SAVE)

        payment_method_id = data.get("payment_method_id")
        if not payment_method_id:
            response.message = "Incomplete data provided"
            response.errors = ["Payment method is required"]
            return response

        if self.customer_data is None or self.customer_data.is_guest():
            response.message = "Incorrect usage"
            response.errors = ["Customer was not specified"]
            return response

        try:
            customer = await self.customer_service.to_payment_provider_customer_or_create(self.customer_data)
        except GatewayError as e:
            logger.error(f"Could not create or retrieve customer while saving {payment_method_id}: {e}")
            customer = None
        if customer is None:
            response.message = "There was an issue"
            response.errors = ["Could not create or retrieve customer"]
            return response

        try:
            gateway_pm = self.gateway.attach_payment_method(payment_method_id, customer.payment_provider_customer_id)
        except GatewayError as e:
            logger.error(f"Could not attach payment method {payment_method_id}: {e}")
            response.message = "There was an issue while saving the payment details"
            response.errors = ["Could not save payment details"]
            return response

        existing = await self.payment_methods.get_by_gateway_id(
            self.payment_provider, gateway_pm.id, customer_id=customer.id
        )
        response.payment_method = await self._record(gateway_pm, customer, existing)
        response.success = True
        return response

    async def update(
        self,
        payment_method: PaymentProviderCustomerPaymentMethod,
        exp_month: int,
        exp_year: int,
    ) -> PaymentMethodResponse:
        """Change the expiry of a saved card at the gateway and locally."""
        response = PaymentMethodResponse(type=ResponseType.SAVE, payment_method=payment_method)
        try:
            gateway_pm = self.gateway.update_payment_method(
                payment_method.payment_provider_payment_method_id,
                {"card": {"exp_month": exp_month, "exp_year": exp_year}},
            )
        except GatewayError as e:
            logger.error(f"Could not update payment method {payment_method.payment_provider_payment_method_id}: {e}")
            response.message = "There was an issue while updating the payment details"
            response.errors = ["Could not update the payment details"]
            return response

        customer = await self.customers.get_by_id(payment_method.customer_id)
        response.payment_method = await self._record(gateway_pm, customer, payment_method)
        response.success = True
        return response

    async def remove(self, payment_method: PaymentProviderCustomerPaymentMethod) -> PaymentMethodResponse:
        """Detach the payment method at the gateway, then delete it locally."""
        response = PaymentMethodResponse(type=ResponseType.DELETE, payment_method=payment_method)
        try:
            self.gateway.detach_payment_method(payment_method.payment_provider_payment_method_id)
        except GatewayError as e:
            logger.error(f"Could not detach payment method {payment_method.payment_provider_payment_method_id}: {e}")
            response.message = "There was an issue while removing the payment details"
            response.errors = ["Could not remove the payment details"]
            return response

        await self.payment_methods.delete(payment_method)
        response.success = True
        return response

    async def sync_all(self) -> bool:
        """
        Mirror the customer's cards held at the gateway: update stored rows,
        add new ones and delete those no longer at the gateway.

        Raises:
            GatewayError: if the gateway list cannot be fetched.
        """
        if self.customer_data is None:
            return True
        customer = await self.customer_service.get(self.customer_data)
        if customer is None:
            # Nothing to sync
            return True

        stored = {
            pm.payment_provider_payment_method_id: pm
            for pm in await self.payment_methods.list_for_customer(customer.id)
            if pm.payment_provider == self.payment_provider
        }
        gateway_methods = self.gateway.list_customer_payment_methods(customer.payment_provider_customer_id, type="card")

        for gateway_pm in gateway_methods:
            await self._record(gateway_pm, customer, stored.pop(gateway_pm.id, None))

        for stale in stored.values():
            await self.payment_methods.delete(stale)

        logger.info(
            f"Synced {len(gateway_methods)} payment method(s) for customer {customer.pid}, "
            f"removed {len(stored)}"
        )
        return True

    async def webhook_updated_or_attached(self, gateway_pm: PaymentMethodObject) -> bool:
        """Store a payment method attached to, or updated for, a known customer.

        Returns:
            False when the owning customer is not known locally.
        """
        customer = await self.customers.get_by_customer_id(self.payment_provider, gateway_pm.customer)
        if customer is None:
            return False

        existing = await self.payment_methods.get_by_gateway_id(
            self.payment_provider, gateway_pm.id, customer_id=customer.id
        )
        await self._record(gateway_pm, customer, existing)
        return True

    async def webhook_detached(self, gateway_pm: PaymentMethodObject) -> bool:
        """Delete the stored copy of a detached payment method.

        Returns:
            True when deleted or already absent. More than one stored match is
            logged and left for manual deletion.
        """
        card = gateway_pm.card
        matches = await self.payment_methods.find_by_card(
            payment_provider=self.payment_provider,
            payment_provider_payment_method_id=gateway_pm.id,
            type=gateway_pm.type,
            last_four=card.last4 if card else None,
            country_code=card.country if card else None,
            brand=card.brand if card else None,
            expires_at_month=card.exp_month if card else None,
            expires_at_year=card.exp_year if card else None,
        )
        if not matches:
            return True
        if len(matches) > 1:
            logger.error(
                f"Found {len(matches)} stored copies of payment method {gateway_pm.id}; "
                f"it must be deleted manually"
            )
            return True

        await self.payment_methods.delete(matches[0])
        return True

    async def _record(
        self,
        gateway_pm: PaymentMethodObject,
        customer: PaymentProviderCustomer,
        payment_method: Optional[PaymentProviderCustomerPaymentMethod] = None,
    ) -> PaymentProviderCustomerPaymentMethod:
        is_new = payment_method is None
        if is_new:
            payment_method = PaymentProviderCustomerPaymentMethod(customer_id=customer.id)

        card = gateway_pm.card
        payment_method.payment_provider_payment_method_id = gateway_pm.id
        payment_method.payment_provider = self.payment_provider
        payment_method.type = gateway_pm.type
        payment_method.country_code = card.country if card else None
        payment_method.brand = card.brand if card else None
        payment_method.last_four = card.last4 if card else None
        payment_method.expires_at_month = card.exp_month if card else None
        payment_method.expires_at_year = card.exp_year if card else None
        payment_method.livemode = gateway_pm.livemode
        payment_method.tenant_id = customer.tenant_id or self.tenant_id

        if is_new:
            return await self.payment_methods.add(payment_method)
        await self.session.flush()
        return payment_method
