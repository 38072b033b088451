# backend/utils/storage.py
from pathlib import Path

from fastapi import Request

from config import settings


class LocalBlobStore:
    """Blob store backed by the uploads directory that main.py serves statically."""

    def __init__(self, root: str | Path = None, url_prefix: str = None, base_url: str = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.url_prefix = (url_prefix or settings.UPLOAD_URL_PREFIX).rstrip("/")
        self.base_url = (settings.BACKEND_URL if base_url is None else base_url).rstrip("/")

    def path_for(self, folder: str, filename: str) -> Path:
        return self.root / folder / filename

    # Store the buffer and return the public URL
    def upload(self, data: bytes, folder: str, filename: str) -> str:
        target = self.path_for(folder, filename)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.base_url}{self.url_prefix}/{folder}/{filename}"

    # Map a URL issued by upload back to its file on disk
    def resolve(self, url: str) -> Path | None:
        marker = f"{self.url_prefix}/"
        if not url or marker not in url:
            return None
        relative = url.split(marker, 1)[1]
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            return None
        return path


# FastAPI dependency: the blob store created in main.py
def get_blob_store(request: Request) -> LocalBlobStore:
    return request.app.state.blob_store
