"""
Configuration for the ordercore services.

OrderCoreConfig is a frozen dataclass passed to the services at
construction time. ``from_env`` builds one from ``ORDERCORE_*`` and
``STRIPE_*`` environment variables for deployments that configure through
the process environment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from ordercore.exceptions import ValidationError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class OrderCoreConfig:
    """
    Configuration for order, payment and refund services.

    Attributes:
        order_reference_prefix: Prefix of human-readable order references
        currency: ISO currency code sent to the payment provider (lower case)
        payment_provider: Provider name stored on Payment rows
        stripe_api_key: Secret API key for the Stripe provider
        webhook_secret: Signing secret used to verify provider webhooks
        strict_transitions: Enforce the order status graph in update_order_status
        reference_attempts: Attempts at generating a unique order reference
        outbox_batch_size: Entries drained per publisher pass
        outbox_max_retries: Delivery attempts before an outbox entry is failed
        outbox_poll_interval: Seconds between publisher passes
        order_cache_ttl: Seconds an order read stays cached (0 disables)
        debug: Include tracebacks in rendered error payloads

    Example:
        >>> config = OrderCoreConfig(order_reference_prefix="SHOP", strict_transitions=True)
    """

    order_reference_prefix: str = "NM"
    currency: str = "usd"
    payment_provider: str = "STRIPE"
    stripe_api_key: str | None = None
    webhook_secret: str | None = None

    strict_transitions: bool = False
    reference_attempts: int = 3

    outbox_batch_size: int = 100
    outbox_max_retries: int = 5
    outbox_poll_interval: float = 1.0

    order_cache_ttl: float = 30.0

    debug: bool = False

    def __post_init__(self) -> None:
        if not self.order_reference_prefix or not self.order_reference_prefix.isalnum():
            raise ValidationError(
                f"order_reference_prefix must be alphanumeric, got {self.order_reference_prefix!r}"
            )
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValidationError(f"currency must be a 3-letter code, got {self.currency!r}")
        if self.reference_attempts < 1:
            raise ValidationError("reference_attempts must be at least 1")
        if self.outbox_batch_size < 1:
            raise ValidationError("outbox_batch_size must be at least 1")
        if self.outbox_max_retries < 1:
            raise ValidationError("outbox_max_retries must be at least 1")
        if self.order_cache_ttl < 0:
            raise ValidationError("order_cache_ttl must not be negative")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OrderCoreConfig:
        """
        Build a configuration from environment variables.

        Recognized variables: ``ORDERCORE_REFERENCE_PREFIX``,
        ``ORDERCORE_CURRENCY``, ``ORDERCORE_PAYMENT_PROVIDER``,
        ``ORDERCORE_STRICT_TRANSITIONS``, ``ORDERCORE_REFERENCE_ATTEMPTS``,
        ``ORDERCORE_OUTBOX_BATCH_SIZE``, ``ORDERCORE_OUTBOX_MAX_RETRIES``,
        ``ORDERCORE_OUTBOX_POLL_INTERVAL``, ``ORDERCORE_ORDER_CACHE_TTL``,
        ``ORDERCORE_DEBUG``, ``STRIPE_SECRET_KEY`` and
        ``STRIPE_WEBHOOK_SECRET``. Unset variables keep their defaults.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            A validated OrderCoreConfig

        Raises:
            ValidationError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        stripe_key = env.get("STRIPE_SECRET_KEY") or None
        if stripe_key is not None and not stripe_key.startswith(("sk_", "rk_")):
            raise ValidationError("STRIPE_SECRET_KEY must start with 'sk_' or 'rk_'")
        webhook_secret = env.get("STRIPE_WEBHOOK_SECRET") or None
        if webhook_secret is not None and not webhook_secret.startswith("whsec_"):
            raise ValidationError("STRIPE_WEBHOOK_SECRET must start with 'whsec_'")

        return cls(
            order_reference_prefix=env.get(
                "ORDERCORE_REFERENCE_PREFIX", defaults.order_reference_prefix
            ),
            currency=env.get("ORDERCORE_CURRENCY", defaults.currency).lower(),
            payment_provider=env.get(
                "ORDERCORE_PAYMENT_PROVIDER", defaults.payment_provider
            ).upper(),
            stripe_api_key=stripe_key,
            webhook_secret=webhook_secret,
            strict_transitions=_parse_bool(
                env, "ORDERCORE_STRICT_TRANSITIONS", defaults.strict_transitions
            ),
            reference_attempts=_parse_int(
                env, "ORDERCORE_REFERENCE_ATTEMPTS", defaults.reference_attempts
            ),
            outbox_batch_size=_parse_int(
                env, "ORDERCORE_OUTBOX_BATCH_SIZE", defaults.outbox_batch_size
            ),
            outbox_max_retries=_parse_int(
                env, "ORDERCORE_OUTBOX_MAX_RETRIES", defaults.outbox_max_retries
            ),
            outbox_poll_interval=_parse_float(
                env, "ORDERCORE_OUTBOX_POLL_INTERVAL", defaults.outbox_poll_interval
            ),
            order_cache_ttl=_parse_float(
                env, "ORDERCORE_ORDER_CACHE_TTL", defaults.order_cache_ttl
            ),
            debug=_parse_bool(env, "ORDERCORE_DEBUG", defaults.debug),
        )


def _parse_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValidationError(f"{name} must be a boolean, got {raw!r}")


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from e


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from e


__all__ = ["OrderCoreConfig"]
