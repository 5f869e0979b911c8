"""
sap_adt.api.models - Pydantic models for API requests/responses
================================================================
"""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Example defaults
# ---------------------------------------------------------------------------

EXAMPLE_ADT_PATH = "/sap/bc/adt/discovery"
EXAMPLE_CLASS_PATH = "/sap/bc/adt/oo/classes/cl_abap_typedescr/source/main"
EXAMPLE_USAGE_REFERENCES_PATH = "/sap/bc/adt/repository/informationsystem/usageReferences"


class AdtRequestModel(BaseModel):
    """Request model for a proxied ADT call."""

    url: str = Field(
        default=EXAMPLE_ADT_PATH,
        description="ADT path relative to the system, e.g. /sap/bc/adt/discovery",
        json_schema_extra={"example": EXAMPLE_CLASS_PATH},
    )
    method: Literal["GET", "HEAD", "POST", "PUT", "DELETE"] = Field(
        default="GET",
        description="HTTP method",
    )
    params: Optional[Dict[str, str]] = Field(
        default=None,
        description="Query parameters",
        json_schema_extra={"example": {"version": "active"}},
    )
    headers: Optional[Dict[str, str]] = Field(
        default=None,
        description="Extra headers (Authorization, x-csrf-token and Cookie are ignored)",
        json_schema_extra={"example": {"Accept": "text/plain"}},
    )
    body: Optional[str] = Field(
        default=None,
        description="Request body for POST/PUT",
    )
    timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Timeout in seconds",
    )


class AdtResponseModel(BaseModel):
    """Upstream ADT response."""

    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""


class SessionStateModel(BaseModel):
    """Exportable session snapshot."""

    cookies: Optional[str] = None
    csrf_token: Optional[str] = None
    cookie_store: Dict[str, str] = Field(default_factory=dict)


class SessionModeRequest(BaseModel):
    mode: Literal["stateless", "stateful"] = Field(
        default="stateless",
        description="stateful pins server-side state (locks) across requests",
    )


class SessionInfoModel(BaseModel):
    """Connection/session overview."""

    session_id: str
    mode: str
    auth_type: str
    connected: bool
    has_csrf_token: bool
    cookie_count: int
    state: Optional[SessionStateModel] = None
