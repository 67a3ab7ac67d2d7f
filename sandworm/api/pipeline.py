"""
Implementation of Pipeline API endpoints
"""

from __future__ import annotations

from sandworm.api.base import PARSE_ERRORS, BaseRouter
from sandworm.models import PipelineStatusResponse, SerializationError


class PipelineAPI(BaseRouter):
    """
    Implementation of Pipeline API Operations
    """

    def get_pipeline_status(self, pipeline_execution_id: str) -> PipelineStatusResponse:
        """GET pipeline execution status"""
        response_json = self._get(route=f"/pipelines/executions/{pipeline_execution_id}/status")
        try:
            return PipelineStatusResponse.from_dict(response_json)
        except PARSE_ERRORS as err:
            raise SerializationError(response_json, "PipelineStatusResponse", err) from err
