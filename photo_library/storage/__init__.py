from .blob_store import (
    BlobStore,
    LocalBlobStore,
    S3BlobStore,
    build_original_key,
    build_rendition_key,
    get_blob_store,
    infer_extension,
    storage_id_from_key,
)

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "build_original_key",
    "build_rendition_key",
    "get_blob_store",
    "infer_extension",
    "storage_id_from_key",
]
