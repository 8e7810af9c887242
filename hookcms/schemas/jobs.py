from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=191)
    job_type: str = Field(..., alias="type", min_length=1)
    description: str | None = None
    icon_svg: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: str = "api"
    show_notification: bool = False
    timeout: int | None = Field(None, gt=0, description="Milliseconds before a running job is failed")
