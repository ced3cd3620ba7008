"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the relay and the HTTP API.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.relay import (
    DeviceInfo,
    InboundEnvelope,
    Presentation,
    RoomCodeData,
    RoomSummaryData,
    Slide,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
