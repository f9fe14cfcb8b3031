from django.conf import settings

from .base import BaseFundCustodian, BaseBankProvider
from .custodian import HttpFundCustodian
from .wise import WiseProvider


def get_fund_custodian(**kwargs) -> BaseFundCustodian:
    """
    Factory function to get the configured fund custodian.

    Args:
        **kwargs: Additional configuration

    Returns:
        BaseFundCustodian: Custodian instance selected by ``FUND_CUSTODIAN``
    """
    custodians = {
        'http': HttpFundCustodian,
    }

    name = settings.FUND_CUSTODIAN
    if name not in custodians:
        raise ValueError(f"Unknown fund custodian: {name}")

    return custodians[name](**kwargs)


def get_bank_provider(provider_name: str | None = None, **kwargs) -> BaseBankProvider:
    """
    Factory function to get bank provider instances.

    Args:
        provider_name: Name of the bank provider, defaults to ``BANK_PROVIDER``
        **kwargs: Additional configuration

    Returns:
        BaseBankProvider: Bank provider instance
    """
    providers = {
        'wise': WiseProvider,
    }

    name = provider_name or settings.BANK_PROVIDER
    if name not in providers:
        raise ValueError(f"Unknown bank provider: {name}")

    return providers[name](**kwargs)
