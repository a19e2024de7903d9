"""Base model for the JSON documents test cases are made of."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Immutable document model.

    Test cases are produced by other tools and carry keys this project does
    not read, so unknown keys are ignored. Fields accept both their name and
    their alias.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")
