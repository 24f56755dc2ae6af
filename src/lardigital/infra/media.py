"""Local storage for media downloaded from the chat channel."""

import re
from pathlib import Path

from lardigital.infra.time import local_date, utc_now

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "application/pdf": ".pdf",
}

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def extension_for(mime_type: str | None) -> str:
    if not mime_type:
        return ".bin"
    base = mime_type.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(base, ".bin")


def store_media(media_dir: str, message_id: str, data: bytes, mime_type: str | None) -> str:
    """Write media bytes under media_dir/YYYY-MM-DD/ and return the path.

    The file name is derived from the channel message id, so a re-delivered
    message overwrites its own file instead of piling up copies.
    """
    folder = Path(media_dir) / local_date(utc_now()).isoformat()
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{_UNSAFE.sub('_', message_id)}{extension_for(mime_type)}"
    path.write_bytes(data)
    return str(path)
