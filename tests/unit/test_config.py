"""
Unit tests for OrderCoreConfig.
"""

import pytest

from ordercore.config import OrderCoreConfig
from ordercore.exceptions import ValidationError


class TestDefaults:
    """Tests for default configuration values."""

    def test_defaults(self):
        config = OrderCoreConfig()
        assert config.order_reference_prefix == "NM"
        assert config.currency == "usd"
        assert config.payment_provider == "STRIPE"
        assert config.strict_transitions is False
        assert config.debug is False

    def test_frozen(self):
        config = OrderCoreConfig()
        with pytest.raises(AttributeError):
            config.currency = "eur"  # type: ignore[misc]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"order_reference_prefix": ""},
            {"order_reference_prefix": "N-M"},
            {"currency": "dollars"},
            {"reference_attempts": 0},
            {"outbox_batch_size": 0},
            {"outbox_max_retries": 0},
            {"order_cache_ttl": -1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            OrderCoreConfig(**kwargs)


class TestFromEnv:
    """Tests for OrderCoreConfig.from_env."""

    def test_empty_environment_keeps_defaults(self):
        assert OrderCoreConfig.from_env({}) == OrderCoreConfig()

    def test_reads_variables(self):
        config = OrderCoreConfig.from_env(
            {
                "ORDERCORE_REFERENCE_PREFIX": "SHOP",
                "ORDERCORE_CURRENCY": "EUR",
                "ORDERCORE_STRICT_TRANSITIONS": "yes",
                "ORDERCORE_REFERENCE_ATTEMPTS": "5",
                "ORDERCORE_ORDER_CACHE_TTL": "0",
                "ORDERCORE_DEBUG": "1",
                "STRIPE_SECRET_KEY": "sk_test_123",
                "STRIPE_WEBHOOK_SECRET": "whsec_abc",
            }
        )
        assert config.order_reference_prefix == "SHOP"
        assert config.currency == "eur"
        assert config.strict_transitions is True
        assert config.reference_attempts == 5
        assert config.order_cache_ttl == 0.0
        assert config.debug is True
        assert config.stripe_api_key == "sk_test_123"
        assert config.webhook_secret == "whsec_abc"

    @pytest.mark.parametrize(
        "environ",
        [
            {"ORDERCORE_STRICT_TRANSITIONS": "maybe"},
            {"ORDERCORE_REFERENCE_ATTEMPTS": "three"},
            {"ORDERCORE_OUTBOX_POLL_INTERVAL": "soon"},
            {"STRIPE_SECRET_KEY": "pk_test_123"},
            {"STRIPE_WEBHOOK_SECRET": "secret"},
        ],
    )
    def test_invalid_variables(self, environ):
        with pytest.raises(ValidationError):
            OrderCoreConfig.from_env(environ)
