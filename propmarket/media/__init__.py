"""Listing media: uploads, attachment and orphan reconciliation."""

from propmarket.media.attacher import MediaAttacher
from propmarket.media.legacy import LegacyReconcileReport, LegacyRootReconciler
from propmarket.media.reconciler import (
    ListingReconcileResult,
    OrphanReconciler,
    ReconcileReport,
)
from propmarket.media.uploads import MediaUploader, UploadFile, UploadResult

__all__ = [
    "MediaAttacher",
    "MediaUploader",
    "UploadFile",
    "UploadResult",
    "OrphanReconciler",
    "ReconcileReport",
    "ListingReconcileResult",
    "LegacyRootReconciler",
    "LegacyReconcileReport",
]
