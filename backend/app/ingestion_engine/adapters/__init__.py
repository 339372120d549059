"""
Adapter factory and registry.
"""
from app.ingestion_engine.core.types import LeadSource
from .base import SourceAdapter
from .facebook import FacebookLeadAdsAdapter
from .google_ads import GoogleAdsLeadFormAdapter
from .website import WebsiteFormAdapter
from .oauth import FacebookOAuthProvider, GoogleOAuthProvider, OAuthProvider, OAuthTokenGrant

# Registry of available adapters
ADAPTER_REGISTRY = {
    LeadSource.FACEBOOK_ADS: FacebookLeadAdsAdapter,
    LeadSource.GOOGLE_ADS: GoogleAdsLeadFormAdapter,
    LeadSource.WEBSITE: WebsiteFormAdapter,
}

# Sources with a refreshable OAuth grant
OAUTH_PROVIDER_REGISTRY = {
    LeadSource.FACEBOOK_ADS: FacebookOAuthProvider,
    LeadSource.GOOGLE_ADS: GoogleOAuthProvider,
}


def get_adapter(source, **kwargs) -> SourceAdapter:
    """
    Factory function to create the adapter for a source.

    Args:
        source: LeadSource or its value
        **kwargs: Passed to the adapter (timeout, transport, ...)

    Returns:
        Instantiated adapter
    """
    adapter_class = ADAPTER_REGISTRY.get(LeadSource(source))

    if not adapter_class:
        raise ValueError(
            f"Unknown source: {source}. "
            f"Available: {[s.value for s in ADAPTER_REGISTRY]}"
        )

    return adapter_class(**kwargs)


def get_oauth_providers(**kwargs):
    """Instantiate one OAuth provider per source that has one."""
    return {
        source: provider_class(**kwargs)
        for source, provider_class in OAUTH_PROVIDER_REGISTRY.items()
    }


__all__ = [
    "ADAPTER_REGISTRY",
    "OAUTH_PROVIDER_REGISTRY",
    "FacebookLeadAdsAdapter",
    "FacebookOAuthProvider",
    "GoogleAdsLeadFormAdapter",
    "GoogleOAuthProvider",
    "OAuthProvider",
    "OAuthTokenGrant",
    "SourceAdapter",
    "WebsiteFormAdapter",
    "get_adapter",
    "get_oauth_providers",
]
