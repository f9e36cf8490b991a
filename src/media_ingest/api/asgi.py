"""ASGI entrypoint for the media ingest API."""

from media_ingest.api.app import create_app
from media_ingest.containers import build_container

app = create_app(build_container())
