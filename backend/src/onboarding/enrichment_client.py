"""HTTP client for the upstream profile-context and re-enrichment endpoints."""

import logging
from typing import Any

import httpx

from src.core.config import settings
from src.core.exceptions import EnrichmentFetchError
from src.core.resilience import RETRYABLE_EXCEPTIONS, retry

logger = logging.getLogger(__name__)

_JSON_CONTENT_TYPES = ("application/json", "+json")


class EnrichmentClient:
    """Reads the enrichment profile on behalf of one browser session.

    Authentication is the upstream session cookie, forwarded verbatim.
    Every request opens a short-lived ``httpx.AsyncClient`` so a cancelled
    poll tears its connection down with it.
    """

    def __init__(
        self,
        session_token: str,
        *,
        profile_context_url: str | None = None,
        enrich_retry_url: str | None = None,
        cookie_name: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            session_token: Value of the upstream session cookie.
            profile_context_url: Override for the profile-context endpoint.
            enrich_retry_url: Override for the re-enrichment endpoint.
            cookie_name: Override for the session cookie name.
            timeout: Per-request timeout in seconds.
        """
        self.profile_context_url = profile_context_url or settings.profile_context_url
        self.enrich_retry_url = enrich_retry_url or settings.enrich_retry_url
        self.cookies = {cookie_name or settings.SESSION_COOKIE_NAME: session_token}
        self.timeout = timeout if timeout is not None else settings.ENRICHMENT_HTTP_TIMEOUT_SECONDS
        self.headers = {
            "Accept": "application/json",
            "Cache-Control": "no-store",
        }

    async def fetch_profile_context(self) -> dict[str, Any]:
        """Fetch the current profile context once.

        Returns:
            The decoded JSON object. Its shape is not fixed: any field may be
            missing or null.

        Raises:
            EnrichmentFetchError: On a non-2xx status, a non-JSON response,
                a body that is not a JSON object, or a transport error.
        """
        try:
            async with httpx.AsyncClient(cookies=self.cookies) as client:
                response = await client.get(
                    self.profile_context_url,
                    headers=self.headers,
                    timeout=self.timeout,
                )
        except httpx.RequestError as e:
            logger.warning("Profile context request failed: %s", type(e).__name__)
            raise EnrichmentFetchError("transport_error") from e

        return self._decode(response)

    def _decode(self, response: httpx.Response) -> dict[str, Any]:
        """Turn a profile-context response into a payload or a soft failure."""
        if not response.is_success:
            logger.info("Profile context returned HTTP %s", response.status_code)
            raise EnrichmentFetchError("http_status", status_code=response.status_code)

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if not content_type.endswith(_JSON_CONTENT_TYPES):
            # Proxies and login redirects answer with HTML
            logger.info("Profile context returned non-JSON content type '%s'", content_type)
            raise EnrichmentFetchError("not_json", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            # Malformed JSON and over-long integer literals both raise ValueError
            raise EnrichmentFetchError("invalid_json", status_code=response.status_code) from e

        if not isinstance(payload, dict):
            raise EnrichmentFetchError("not_an_object", status_code=response.status_code)
        return payload

    @retry(max_retries=1, retry_on=RETRYABLE_EXCEPTIONS)
    async def _post_retry(self) -> httpx.Response:
        async with httpx.AsyncClient(cookies=self.cookies) as client:
            return await client.post(
                self.enrich_retry_url,
                headers=self.headers,
                timeout=self.timeout,
            )

    async def trigger_reenrichment(self) -> bool:
        """Ask the server to start a fresh enrichment job.

        Best effort: the response body is ignored and failures are only
        logged. The poll loop that follows is the source of truth.

        Returns:
            True if the server accepted the request with a 2xx status.
        """
        try:
            response = await self._post_retry()
        except httpx.HTTPError as e:
            logger.warning("Re-enrichment trigger failed: %s", type(e).__name__)
            return False

        if not response.is_success:
            logger.warning("Re-enrichment trigger returned HTTP %s", response.status_code)
            return False

        logger.info("Re-enrichment triggered")
        return True
