from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    database: bool
    redis: bool
    version: str
    detail: Optional[dict] = None
