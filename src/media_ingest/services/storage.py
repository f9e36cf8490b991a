"""Object store interface used by the ingestion services."""

from pathlib import Path
from typing import Protocol


class ObjectStore(Protocol):
    """Durable blob storage reachable through time-limited signed URLs."""

    def create_upload_url(self, key: str, expires_in: int) -> str:
        """Return a signed URL that allows one PUT to ``key``."""

    def create_download_url(self, key: str, expires_in: int) -> str:
        """Return a signed URL that allows reading ``key``."""

    def upload_file(self, key: str, local_path: Path) -> None:
        """Upload a local file to ``key``, overwriting any existing object."""

    def download_file(self, key: str, local_path: Path) -> None:
        """Download ``key`` into ``local_path``."""
