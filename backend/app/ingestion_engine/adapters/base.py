"""
Base adapter interface for lead sources.
All adapters must implement this interface.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import httpx

from app.config import settings
from app.ingestion_engine.core.types import InboundLeadEvent, LeadSource
from app.ingestion_engine.errors import ProviderAuthError, ProviderError, ProviderUnavailableError


class SourceAdapter(ABC):
    """
    Abstract base class for all lead source adapters.

    An adapter knows how a source delivers leads: whether the webhook body
    is the lead or only points at it, how to fetch the full record with an
    access token, and how to flatten the provider's record into a plain
    field dict for the FieldMapper.
    """

    source: LeadSource

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize adapter.

        Args:
            timeout: Bound for provider calls (seconds)
            transport: httpx transport override (tests use httpx.MockTransport)
        """
        self.timeout = timeout if timeout is not None else settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        self.transport = transport

    def requires_detail_fetch(self, event: InboundLeadEvent) -> bool:
        """Whether the event only references the lead and needs an authenticated fetch."""
        return False

    async def fetch_detail(self, event: InboundLeadEvent, access_token: str) -> Dict[str, Any]:
        """
        Fetch the full lead record for an event.

        Sources that deliver the whole lead inline return the inbound payload.

        Raises:
            ProviderError: provider rejected the call or was unreachable
        """
        return event.payload

    @abstractmethod
    def parse_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Flatten a provider record into the field dict the mapping rules see.

        Returns:
            Dict of source_field: value
        """
        pass

    def extract_external_id(self, payload: Dict[str, Any]) -> Optional[str]:
        for key in ("id", "lead_id", "leadgen_id"):
            value = payload.get(key)
            if value not in (None, ""):
                return str(value)
        return None

    async def _request_json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        return await request_json(
            self.source.value, method, url,
            timeout=self.timeout, transport=self.transport, **kwargs
        )


async def request_json(
    provider: str,
    method: str,
    url: str,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    auth_statuses: Tuple[int, ...] = (401, 403),
    **kwargs,
) -> Dict[str, Any]:
    """
    Make a provider call and return the decoded JSON body.

    Timeouts and network errors become ProviderUnavailableError, auth_statuses
    become ProviderAuthError, anything else non-2xx is a ProviderError.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderUnavailableError(provider, f"request timed out: {e}") from e
    except httpx.HTTPError as e:
        raise ProviderUnavailableError(provider, f"request failed: {e}") from e

    raise_for_provider_status(provider, response, auth_statuses)

    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(provider, "response is not JSON", response.status_code) from e


def raise_for_provider_status(
    provider: str,
    response: httpx.Response,
    auth_statuses: Tuple[int, ...] = (401, 403),
) -> None:
    """Translate an error response into the ProviderError hierarchy."""
    if response.is_success:
        return

    message = _error_message(response)
    if response.status_code in auth_statuses:
        raise ProviderAuthError(provider, message, response.status_code)
    if response.status_code >= 500 or response.status_code == 429:
        raise ProviderUnavailableError(provider, message, response.status_code)
    raise ProviderError(provider, message, response.status_code)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("status") or f"HTTP {response.status_code}"
    if isinstance(error, str):
        description = body.get("error_description")
        return f"{error}: {description}" if description else error
    return f"HTTP {response.status_code}"
