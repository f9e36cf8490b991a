"""Object-store key layout, namespaced per session and artifact role.

Structure::

    videos/{session_id}/
        source/{source_name}
        chunks/chunk_000.mp4, chunk_001.mp4, ...
        segments/segment_0000.mp4, segment_0001.mp4, ...
"""

import re
from pathlib import PurePath

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def source_key(session_id: str, source_name: str) -> str:
    """Key of the single-object original upload."""
    return f"videos/{session_id}/source/{safe_name(source_name)}"


def chunk_key(session_id: str, chunk_index: int) -> str:
    """Key of a client-uploaded chunk."""
    return f"videos/{session_id}/chunks/chunk_{chunk_index:03d}.mp4"


def segment_key(session_id: str, segment_index: int, suffix: str = ".mp4") -> str:
    """Key of a server-produced segment."""
    return f"videos/{session_id}/segments/segment_{segment_index:04d}{suffix}"


def safe_name(source_name: str) -> str:
    """Reduce a client file name to a single safe path component."""
    name = PurePath(source_name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "source"
