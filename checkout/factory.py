# checkout/factory.py
"""
Provider factory for the payment and generation integrations.

Usage:
    provider = ProviderFactory.get_payment_provider("mock")
    backend = ProviderFactory.get_generation_backend("http", base_url="https://gen.internal")
"""

from autopilot.backends import GenerationBackend, MockGenerationBackend
from autopilot.http_backend import HttpGenerationBackend
from billing.providers import MockPaymentProvider, PaymentProvider
from billing.stripe_provider import StripePaymentProvider


class ProviderFactory:
    """Looks up integration classes by source name."""

    _payment_providers = {
        "mock": MockPaymentProvider,
        "stripe": StripePaymentProvider,
    }

    _generation_backends = {
        "mock": MockGenerationBackend,
        "http": HttpGenerationBackend,
    }

    @classmethod
    def get_payment_provider(cls, source: str = "mock", **kwargs) -> PaymentProvider:
        """
        Get a payment provider by source name.

        Args:
            source: Provider identifier ("mock", "stripe")
            **kwargs: Provider-specific config (outcomes, payment_method, ...)

        Raises:
            ValueError: If source is unknown
        """
        if source not in cls._payment_providers:
            raise ValueError(
                f"Unknown payment provider: {source}. "
                f"Available: {list(cls._payment_providers.keys())}"
            )
        return cls._payment_providers[source](**kwargs)

    @classmethod
    def get_generation_backend(cls, source: str = "mock", **kwargs) -> GenerationBackend:
        """
        Get a generation backend by source name.

        Raises:
            ValueError: If source is unknown
        """
        if source not in cls._generation_backends:
            raise ValueError(
                f"Unknown generation backend: {source}. "
                f"Available: {list(cls._generation_backends.keys())}"
            )
        return cls._generation_backends[source](**kwargs)

    @classmethod
    def register_payment_provider(cls, name: str, provider_class: type):
        cls._payment_providers[name] = provider_class

    @classmethod
    def register_generation_backend(cls, name: str, backend_class: type):
        cls._generation_backends[name] = backend_class

    @classmethod
    def available_payment_providers(cls) -> list:
        return list(cls._payment_providers.keys())

    @classmethod
    def available_generation_backends(cls) -> list:
        return list(cls._generation_backends.keys())
