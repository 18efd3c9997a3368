"""HTTP client for a remote PromptVerse JSON API.

Endpoints answer with an envelope: ``{"ok": true, "prompts": [...]}`` on
success and ``{"ok": false, "error": "..."}`` on failure.
"""
from typing import Any, Dict, List, Optional

import httpx

from promptverse.inflight import RequestDeduplicator


class PromptApiError(RuntimeError):
    """The API could not be reached or reported a failure."""


class PromptApiClient:
    """Async client for prompts, categories and tags.

    Concurrent identical reads share one HTTP request.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": "PromptVerse/1.0", "Accept": "application/json"},
        )
        self._dedup = RequestDeduplicator()

    async def __aenter__(self) -> "PromptApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, field: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PromptApiError(f"{method} {path} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise PromptApiError(f"{method} {path} returned invalid JSON (HTTP {response.status_code})") from e

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else None
            raise PromptApiError(error or f"{method} {path} failed with HTTP {response.status_code}")
        if response.is_error:
            raise PromptApiError(f"{method} {path} failed with HTTP {response.status_code}")

        return data.get(field)

    async def _get(self, path: str, field: str, params: Optional[Dict[str, str]] = None) -> Any:
        key = ("GET", path, tuple(sorted((params or {}).items())))
        return await self._dedup.run(key, lambda: self._request("GET", path, field, params=params))

    async def _get_list(self, path: str, field: str) -> List[Dict[str, Any]]:
        data = await self._get(path, field)
        if not isinstance(data, list):
            raise PromptApiError(f"Invalid {field} response")
        return data

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    async def list_prompts(self) -> List[Dict[str, Any]]:
        return await self._get_list("prompts.php", "prompts")

    async def get_prompt(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one prompt, or None if the API does not know it."""
        try:
            return await self._get("prompts.php", "prompt", params={"id": prompt_id})
        except PromptApiError as e:
            if "not found" in str(e).lower():
                return None
            raise

    async def create_prompt(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "prompts.php", "prompt", json=data)

    async def update_prompt(self, prompt_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a partial update.

        The update action requires title and content, so whichever of them
        ``changes`` omits is filled in from the current prompt.

        Returns:
            The updated prompt, or None if the API does not know it
        """
        payload = dict(changes)
        missing = [name for name in ("title", "content") if not payload.get(name)]
        if missing:
            current = await self.get_prompt(prompt_id)
            if current is None:
                return None
            for name in missing:
                payload[name] = current.get(name)

        payload.update(action="update", id=prompt_id)
        try:
            return await self._request("POST", "prompts.php", "prompt", json=payload)
        except PromptApiError as e:
            if "not found" in str(e).lower():
                return None
            raise

    # ------------------------------------------------------------------
    # Categories and tags
    # ------------------------------------------------------------------

    async def list_categories(self) -> List[Dict[str, Any]]:
        return await self._get_list("categories.php", "categories")

    async def list_tags(self) -> List[Dict[str, Any]]:
        return await self._get_list("tags.php", "tags")

    @property
    def pending_requests(self) -> List[Any]:
        return self._dedup.pending
