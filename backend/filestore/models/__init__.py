from filestore.models.objects import (
    ListingEntry,
    ObjectReference,
    PresignedUrlRequest,
    UploadRequest,
)

__all__ = [
    "ObjectReference",
    "UploadRequest",
    "ListingEntry",
    "PresignedUrlRequest",
]
