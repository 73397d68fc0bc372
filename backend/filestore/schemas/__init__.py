from filestore.schemas.files import FileDetails, UploadResult
from filestore.schemas.health import HealthReport

__all__ = [
    "UploadResult",
    "FileDetails",
    "HealthReport",
]
