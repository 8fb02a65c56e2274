"""
Asset publishers: turn a local image file into a stable, fetchable URL.
"""

from __future__ import annotations

import logging
import mimetypes
import shutil
from pathlib import Path
from typing import Protocol

from google.cloud import storage

from taleweaver.common import PublishError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "/api/storage"
CACHE_CONTROL = "public, max-age=3600"


class AssetPublisher(Protocol):
    def publish(self, local_path: str | Path, logical_name: str) -> str:
        ...

    def delete(self, logical_name: str) -> None:
        ...

    def resolve(self, url: str) -> str | Path:
        ...


def _validate_logical_name(logical_name: str) -> str:
    name = logical_name.strip().lstrip("/")
    if not name or ".." in Path(name).parts:
        raise PublishError(f"Invalid asset name {logical_name!r}.")
    return name


class LocalAssetPublisher:
    """
    Publishes assets by copying them under ``root_dir``; URLs are ``<base_url>/<name>``.
    """

    def __init__(self, root_dir: str | Path, *, base_url: str = DEFAULT_BASE_URL) -> None:
        self._root = Path(root_dir)
        self._base_url = base_url.rstrip("/")

    @property
    def root_dir(self) -> Path:
        return self._root

    def publish(self, local_path: str | Path, logical_name: str) -> str:
        name = _validate_logical_name(logical_name)
        destination = self._root / name
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, destination)
        except OSError as exc:
            raise PublishError(f"Failed to publish {name}: {exc}") from exc
        return f"{self._base_url}/{name}"

    def delete(self, logical_name: str) -> None:
        try:
            name = _validate_logical_name(logical_name)
            (self._root / name).unlink(missing_ok=True)
        except (OSError, PublishError):
            logger.warning("Failed to delete asset %s", logical_name, exc_info=True)

    def resolve(self, url: str) -> str | Path:
        """
        Map a URL returned by :meth:`publish` back to the file under ``root_dir``.
        """
        prefix = f"{self._base_url}/"
        if url.startswith(prefix):
            return self._root / url[len(prefix):]
        return url


class GCSAssetPublisher:
    """
    Publishes assets to a Google Cloud Storage bucket.

    Parameters
    ----------
    bucket_name:
        Target bucket.
    prefix:
        Optional object name prefix, e.g. ``"storybooks"``.
    base_url:
        URL prefix returned for published objects. Defaults to the bucket's
        public ``https://storage.googleapis.com/<bucket>`` endpoint.
    client:
        Optional pre-configured :class:`google.cloud.storage.Client`.
    """

    def __init__(
        self,
        bucket_name: str,
        *,
        prefix: str = "",
        base_url: str | None = None,
        client: storage.Client | None = None,
    ) -> None:
        if not bucket_name:
            raise ValueError("bucket_name is required for GCS publishing.")
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket_name)
        self._prefix = prefix.strip("/")
        self._base_url = (base_url or f"https://storage.googleapis.com/{bucket_name}").rstrip("/")

    def _object_name(self, logical_name: str) -> str:
        name = _validate_logical_name(logical_name)
        return f"{self._prefix}/{name}" if self._prefix else name

    def publish(self, local_path: str | Path, logical_name: str) -> str:
        object_name = self._object_name(logical_name)
        content_type = mimetypes.guess_type(object_name)[0] or "image/png"
        blob = self._bucket.blob(object_name)
        blob.cache_control = CACHE_CONTROL
        try:
            blob.upload_from_filename(str(local_path), content_type=content_type)
        except Exception as exc:
            raise PublishError(f"Failed to upload {object_name}: {exc}") from exc
        return f"{self._base_url}/{object_name}"

    def delete(self, logical_name: str) -> None:
        try:
            self._bucket.blob(self._object_name(logical_name)).delete()
        except Exception:
            logger.warning("Failed to delete asset %s", logical_name, exc_info=True)

    def resolve(self, url: str) -> str | Path:
        # Public bucket URLs are fetched directly by the image model.
        return url
