"""HTTP interface for the billing engine."""

from api.base import (
    APIError,
    APIResponse,
    success_response,
    error_response,
    ErrorCodes,
)
from api.app import build_services, create_app, create_app_from_env
