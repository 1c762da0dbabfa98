"""Blob store backends: the interface, a filesystem bucket and Supabase Storage."""

from propmarket.blobstore.base import BlobEntry, BlobStore
from propmarket.blobstore.local import LocalBlobStore
from propmarket.blobstore.supabase import SupabaseBlobStore

__all__ = [
    "BlobEntry",
    "BlobStore",
    "LocalBlobStore",
    "SupabaseBlobStore",
]
