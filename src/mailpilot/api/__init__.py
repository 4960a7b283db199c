"""API - inbound processing service and HTTP endpoints.

Endpoints:
    POST /inbound
    GET|POST /a/{token}
    GET /activity, /activity/metrics, /activity/{step_id}
"""

from mailpilot.api.gateway import app
from mailpilot.api.schemas import InboundMessageRequest, InboundResponse, ErrorResponse
from mailpilot.api.service import InboundProcessingService

__all__ = [
    "app",
    "InboundMessageRequest",
    "InboundResponse",
    "ErrorResponse",
    "InboundProcessingService",
]
