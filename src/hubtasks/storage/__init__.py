"""Object storage for files too large for direct provider upload."""

from .object_storage import ObjectStorageUploader

__all__ = ["ObjectStorageUploader"]
