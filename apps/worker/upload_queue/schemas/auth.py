"""Authenticated caller schemas."""

from pydantic import BaseModel, Field


class TenantPrincipal(BaseModel):
    """Dashboard user behind a request; each user is its own tenant."""

    tenant_id: str = Field(min_length=1)
    email: str | None = None
