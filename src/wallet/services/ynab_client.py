"""Thin YNAB API client for category-group trees."""

import logging

import httpx
from pydantic import ValidationError as PydanticValidationError

from wallet.core.exceptions import ProtocolError, UpstreamError, YnabUnauthorizedError
from wallet.schemas.ynab import YnabCategoriesResponse, YnabCategoryGroupNode

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
BODY_SNIPPET_LENGTH = 500


class YnabClient:
    """Fetches category taxonomies from YNAB with bearer-token auth.

    The client does not filter hidden, deleted or internal entries; that is
    the sync engine's job.
    """

    def __init__(
        self,
        base_url: str = "https://api.ynab.com/v1",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = http_client
        self._owns_client = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    async def fetch_category_groups(
        self, token: str, budget_id: str, timeout: float = DEFAULT_TIMEOUT_SECONDS
    ) -> list[YnabCategoryGroupNode]:
        """
        Fetch the budget's category groups with their categories.

        Args:
            token: YNAB personal access token
            budget_id: Budget whose categories to fetch
            timeout: Upper bound in seconds for the whole request

        Returns:
            Category groups exactly as YNAB reported them

        Raises:
            YnabUnauthorizedError: YNAB answered 401
            UpstreamError: Any other non-2xx answer, or a transport failure
            ProtocolError: The body is not the expected JSON document
        """
        url = f"{self.base_url}/budgets/{budget_id}/categories"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

        try:
            response = await self._client().get(url, headers=headers, timeout=timeout)
        except httpx.HTTPError as exc:
            logger.warning(f"YNAB request for budget {budget_id} failed: {type(exc).__name__}")
            raise UpstreamError(f"Error making request to YNAB: {exc}", transient=True) from exc

        logger.debug(f"YNAB categories response status: {response.status_code}")

        if response.status_code == 401:
            raise YnabUnauthorizedError("YNAB rejected the API token")

        if not response.is_success:
            snippet = response.text[:BODY_SNIPPET_LENGTH]
            logger.warning(f"YNAB API returned status {response.status_code}")
            raise UpstreamError(
                status_code=response.status_code,
                body=snippet,
                transient=response.status_code >= 500,
            )

        try:
            payload = YnabCategoriesResponse.model_validate_json(response.content)
        except PydanticValidationError as exc:
            raise ProtocolError(
                "YNAB categories response could not be decoded",
                details={"errors": exc.error_count()},
            ) from exc

        return payload.data.category_groups
