"""HTTP surface: the gateway webhook endpoint and authenticated transaction operations."""

import re
import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlparse

from fastapi import FastAPI, Request, Header, HTTPException, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import verify_api_key, limiter, TRANSACTION_RATE_LIMIT
from .config import ProviderConfig
from .database import get_db, init_db, close_db, TransactionRepository, Transaction
from .gateway import PaymentGateway, StripeGateway
from .orders import Order, CustomerData
from .provider import StripeIntentProvider
from .webhooks import WebhookRouter

logger = logging.getLogger(__name__)

PID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Payments Intent Adapter", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def webhook_path(config: Optional[ProviderConfig] = None) -> str:
    """Route path of the webhook endpoint, derived from the configured endpoint."""
    config = config or ProviderConfig.from_env()
    return "/" + urlparse(config.webhook_endpoint).path.strip("/")


def get_config() -> ProviderConfig:
    return ProviderConfig.from_env()


def get_gateway(config: ProviderConfig = Depends(get_config)) -> PaymentGateway:
    return StripeGateway(config)


def get_provider(
    db: AsyncSession = Depends(get_db),
    config: ProviderConfig = Depends(get_config),
    gateway: PaymentGateway = Depends(get_gateway),
) -> StripeIntentProvider:
    return StripeIntentProvider(db, config, gateway=gateway)


def validate_pid(pid: str) -> str:
    """Reject transaction ids that are not lowercase UUIDs."""
    if not PID_PATTERN.match(pid):
        raise HTTPException(status_code=400, detail="Invalid transaction id format")
    return pid


async def _get_transaction(provider: StripeIntentProvider, pid: str) -> Transaction:
    transaction = await TransactionRepository(provider.session).get_by_pid(validate_pid(pid))
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


class InitBody(BaseModel):
    orderable_id: str
    amount: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    description: Optional[str] = None
    user_type: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    cashier_id: Optional[str] = None
    transaction_pid: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_method_pid: Optional[str] = None


class ChargeBody(BaseModel):
    cashier_id: Optional[str] = None
    save_payment_method: bool = False


class RefundBody(BaseModel):
    cashier_id: Optional[str] = None
    amount: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = None


@app.post(webhook_path(), response_class=PlainTextResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: StripeIntentProvider = Depends(get_provider),
    stripe_signature: Optional[str] = Header(None),
):
    payload = await request.body()
    status_code, text = await WebhookRouter(provider).handle(payload, stripe_signature)
    if status_code != 200:
        await db.rollback()
    return PlainTextResponse(text, status_code=status_code)


@app.post("/transactions/init")
@limiter.limit(TRANSACTION_RATE_LIMIT)
async def init_transaction(
    request: Request,
    body: InitBody,
    provider: StripeIntentProvider = Depends(get_provider),
    api_key: str = Depends(verify_api_key),
):
    transaction = None
    if body.transaction_pid:
        transaction = await _get_transaction(provider, body.transaction_pid)

    order = Order(
        orderable_id=body.orderable_id,
        amount=body.amount,
        currency=body.currency,
        description=body.description,
    )
    customer = CustomerData(user_type=body.user_type, user_id=body.user_id, email=body.email)
    data = {"payment_method_id": body.payment_method_id, "payment_method_pid": body.payment_method_pid}
    response = await provider.init(
        order, customer, data=data, transaction=transaction, cashier_id=body.cashier_id
    )
    return response.to_dict()


@app.post("/transactions/{pid}/charge")
@limiter.limit(TRANSACTION_RATE_LIMIT)
async def charge_transaction(
    request: Request,
    pid: str,
    body: ChargeBody,
    provider: StripeIntentProvider = Depends(get_provider),
    api_key: str = Depends(verify_api_key),
):
    transaction = await _get_transaction(provider, pid)
    data = {"save_payment_method": 1 if body.save_payment_method else 0}
    if body.cashier_id:
        response = await provider.cashier_charge(body.cashier_id, transaction, data)
    else:
        response = await provider.charge(transaction, data)
    return response.to_dict()


@app.post("/transactions/{pid}/refund")
@limiter.limit(TRANSACTION_RATE_LIMIT)
async def refund_transaction(
    request: Request,
    pid: str,
    body: RefundBody,
    provider: StripeIntentProvider = Depends(get_provider),
    api_key: str = Depends(verify_api_key),
):
    transaction = await _get_transaction(provider, pid)
    response = await provider.refund(body.cashier_id, transaction, body.amount, body.description)
    return response.to_dict()


@app.post("/transactions/{pid}/sync")
@limiter.limit(TRANSACTION_RATE_LIMIT)
async def sync_transaction(
    request: Request,
    pid: str,
    provider: StripeIntentProvider = Depends(get_provider),
    api_key: str = Depends(verify_api_key),
):
    transaction = await _get_transaction(provider, pid)
    response = await provider.sync_transaction(transaction)
    return response.to_dict()
