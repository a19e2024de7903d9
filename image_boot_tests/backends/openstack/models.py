"""Pydantic models for OpenStack API responses."""

from collections.abc import Mapping, Sequence
from typing import Literal

from pydantic import BaseModel, Field


class Endpoint(BaseModel):
    """An endpoint of a service in the Keystone catalog."""

    interface: str
    url: str
    region_id: str | None = None


class CatalogEntry(BaseModel):
    """A service in the Keystone catalog."""

    type: str
    endpoints: Sequence[Endpoint]


class Token(BaseModel):
    """Body of a Keystone token."""

    catalog: Sequence[CatalogEntry] = ()


class TokenResponse(BaseModel):
    """Response from POST /v3/auth/tokens."""

    token: Token


class Image(BaseModel):
    """A Glance image."""

    id: str
    name: str | None = None
    status: str


class Flavor(BaseModel):
    """A Nova flavor."""

    id: str
    name: str


class FlavorsResponse(BaseModel):
    """Response from GET /flavors."""

    flavors: Sequence[Flavor]


class ServerAddress(BaseModel):
    """An address of a Nova server."""

    addr: str
    version: int
    type: Literal["fixed", "floating"] | None = Field(
        default=None, alias="OS-EXT-IPS:type"
    )


class Server(BaseModel):
    """A Nova server."""

    id: str
    status: str = "BUILD"
    addresses: Mapping[str, Sequence[ServerAddress]] = Field(default_factory=dict)


class ServerResponse(BaseModel):
    """Response wrapping a single server."""

    server: Server
