"""Supabase Storage implementation of the object store."""

import mimetypes
from dataclasses import dataclass
from pathlib import Path

import httpx
from supabase import Client

from media_ingest.services.storage import ObjectStore


@dataclass
class SupabaseObjectStore(ObjectStore):
    """Object store backed by a Supabase Storage bucket."""

    client: Client
    bucket: str
    http_client: httpx.Client

    @classmethod
    def create(cls, client: Client, bucket: str) -> "SupabaseObjectStore":
        """Create a store with a managed httpx session for streamed downloads."""
        return cls(client=client, bucket=bucket, http_client=httpx.Client())

    def create_upload_url(self, key: str, expires_in: int) -> str:
        """Create a signed upload URL.

        Supabase issues upload tokens with a fixed two hour lifetime, so
        ``expires_in`` only informs the expiry reported to clients.
        """
        response = self.client.storage.from_(self.bucket).create_signed_upload_url(
            key
        )
        url = response.get("signed_url") or response.get("signedUrl")
        if not url:
            raise RuntimeError(f"Supabase returned no upload URL for {key}")
        return str(url)

    def create_download_url(self, key: str, expires_in: int) -> str:
        """Create a signed download URL valid for ``expires_in`` seconds."""
        response = self.client.storage.from_(self.bucket).create_signed_url(
            key, expires_in
        )
        url = response.get("signedURL") or response.get("signedUrl")
        if not url:
            raise RuntimeError(f"Supabase returned no download URL for {key}")
        return str(url)

    def upload_file(self, key: str, local_path: Path) -> None:
        """Upload a file with upsert so retries overwrite earlier attempts."""
        content_type = mimetypes.guess_type(local_path.name)[0] or "video/mp4"
        with local_path.open("rb") as handle:
            self.client.storage.from_(self.bucket).upload(
                key,
                handle,
                file_options={"content-type": content_type, "upsert": "true"},
            )

    def download_file(self, key: str, local_path: Path) -> None:
        """Stream an object to disk through a short-lived signed URL."""
        url = self.create_download_url(key, expires_in=600)
        with self.http_client.stream("GET", url, timeout=None) as response:
            response.raise_for_status()
            with local_path.open("wb") as handle:
                for block in response.iter_bytes():
                    handle.write(block)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.http_client.close()
