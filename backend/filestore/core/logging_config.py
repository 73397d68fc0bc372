import logging
import logging.config

from filestore.core.config import Settings


class ApplicationFilter(logging.Filter):
    """Stamps the application name on every record."""

    def __init__(self, application: str = "") -> None:
        super().__init__()
        self.application = application

    def filter(self, record: logging.LogRecord) -> bool:
        record.application = self.application
        return True


def configure_logging(settings: Settings) -> None:
    level = settings.log_level.upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "application": {
                    "()": ApplicationFilter,
                    "application": settings.app_name,
                },
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)-8s [%(application)s] %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["application"],
                },
            },
            "loggers": {
                "filestore": {"level": level, "handlers": ["console"], "propagate": False},
                # botocore logs request signing details at DEBUG.
                "botocore": {"level": "WARNING"},
                "boto3": {"level": "WARNING"},
            },
        }
    )
