from __future__ import annotations

import logging
import threading
from typing import Protocol

from academy.config import settings
from academy.core.errors import GatewayNotConfiguredError


logger = logging.getLogger(__name__)


class PaymentProvider(Protocol):
    name: str

    def create_order(self, amount: float, currency: str) -> str:
        ...

    def verify(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        ...


_PROVIDERS: dict[str, PaymentProvider] = {}
_PROVIDERS_LOCK = threading.RLock()


def register_payment_provider(provider: PaymentProvider) -> None:
    key = str(provider.name or '').strip().lower()
    if not key:
        raise ValueError('Payment provider needs a name')
    with _PROVIDERS_LOCK:
        _PROVIDERS[key] = provider
    logger.info('payment_provider_registered name=%s', key)


def unregister_payment_provider(name: str) -> None:
    with _PROVIDERS_LOCK:
        _PROVIDERS.pop(str(name or '').strip().lower(), None)


def get_payment_provider() -> PaymentProvider:
    key = (settings.payment_provider or '').strip().lower()
    if not key:
        raise GatewayNotConfiguredError('Online payments are not configured')
    with _PROVIDERS_LOCK:
        provider = _PROVIDERS.get(key)
    if provider is None:
        logger.warning('payment_provider_missing name=%s', key)
        raise GatewayNotConfiguredError(f'Payment provider {key} is not available')
    return provider
