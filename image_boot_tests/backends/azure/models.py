"""Pydantic models for Azure API responses."""

from pydantic import BaseModel, Field


class AccessToken(BaseModel):
    """Response from the OAuth2 token endpoint."""

    access_token: str
    token_type: str = "Bearer"


class ResourceProperties(BaseModel):
    """The part of ARM resource properties the client looks at."""

    provisioning_state: str | None = Field(default=None, alias="provisioningState")
    ip_address: str | None = Field(default=None, alias="ipAddress")


class Resource(BaseModel):
    """An Azure Resource Manager resource."""

    id: str | None = None
    name: str | None = None
    properties: ResourceProperties = Field(default_factory=ResourceProperties)
