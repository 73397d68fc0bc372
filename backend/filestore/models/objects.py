from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO


@dataclass(frozen=True)
class ObjectReference:
    bucket: str
    key: str


@dataclass(frozen=True)
class UploadRequest:
    """One inbound upload; ``stream`` is read once, forward only."""

    reference: ObjectReference
    content_type: str
    size_bytes: int
    stream: BinaryIO


@dataclass(frozen=True)
class ListingEntry:
    bucket: str
    key: str
    size_bytes: int = 0
    is_dir: bool = False


@dataclass(frozen=True)
class PresignedUrlRequest:
    reference: ObjectReference
    expiry_seconds: int

    def __post_init__(self) -> None:
        if self.expiry_seconds <= 0:
            raise ValueError("expiry_seconds must be positive")
