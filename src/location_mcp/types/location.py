"""Domain models for shared locations and API keys."""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Location(_CamelModel):
    """A user's most recently shared position."""

    user_id: Annotated[str, Field(alias="userId")]
    latitude: Latitude
    longitude: Longitude
    timestamp: datetime

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class LocationUpdate(_CamelModel):
    """Payload sent by the mobile client to update its location."""

    latitude: Annotated[float, Field(strict=True)]
    longitude: Annotated[float, Field(strict=True)]


class ApiKey(_CamelModel):
    """Public view of an API key. Only a short prefix of the secret is exposed."""

    key_prefix: Annotated[str, Field(alias="keyPrefix")]
    user_id: Annotated[str, Field(alias="userId")]
    created_at: Annotated[datetime, Field(alias="createdAt")]
    name: str | None = None


class ApiKeyWithSecret(ApiKey):
    """An API key including the raw secret, returned only once at creation."""

    raw_key: Annotated[str, Field(alias="rawKey")]
