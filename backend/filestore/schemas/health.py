from typing import Literal

from pydantic import BaseModel


class HealthReport(BaseModel):
    status: Literal["Healthy", "Unhealthy"]
    description: str

    @property
    def healthy(self) -> bool:
        return self.status == "Healthy"
