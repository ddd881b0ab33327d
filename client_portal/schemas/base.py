"""Base schemas shared by every portal endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class PortalBaseModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )


class PaginatedResponse(PortalBaseModel):
    """Page of results with totals for the pager."""

    items: list[Any]
    total: int
    page: int
    page_size: int
    total_pages: int


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorResponse(PortalBaseModel):
    """Body of every refused request.

    ``message`` is always safe to show a client. For link and passcode
    failures it is one of the generic messages, whatever the cause.
    """

    error: str
    message: str
    retryable: bool = False
    remaining_attempts: int | None = None
