"""InspectorAPI 응답 모델(InspectorAPI response models)."""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from summary_worker.app.models import JobStatus


class StartResponse(BaseModel):
    """작업 제출 응답(Job submission response)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    status: JobStatus = JobStatus.PENDING
    message: str = "Analysis started"


class StatusResponse(BaseModel):
    """작업 상태 응답(Job status response).

    ``result`` is present only when completed; ``error`` and, when known,
    ``errorCode`` only when failed.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: JobStatus
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
