"""HTTP client for the batch analysis service."""

from dataclasses import dataclass

import httpx

from media_ingest.services.analysis import AnalysisClient, TransientAnalysisError


@dataclass
class HttpxAnalysisClient(AnalysisClient):
    """HTTPX-backed analysis client posting segment references as form fields."""

    base_url: str
    batch_path: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str, batch_path: str) -> "HttpxAnalysisClient":
        """Create an analysis client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            batch_path=batch_path,
            http_client=httpx.AsyncClient(),
        )

    async def analyze_batch(self, references: list[str]) -> dict[str, object]:
        """Post every reference as a repeated ``files`` multipart field.

        Analysis can take minutes, so the request has no timeout; callers
        cancel the surrounding task instead.
        """
        url = f"{self.base_url}{self.batch_path}"
        fields = [("files", (None, reference)) for reference in references]
        try:
            response = await self.http_client.post(url, files=fields, timeout=None)
        except httpx.TransportError as exc:
            raise TransientAnalysisError(str(exc) or type(exc).__name__) from exc
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
