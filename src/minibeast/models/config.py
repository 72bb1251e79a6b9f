"""Server configuration models."""

from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServerSettings(BaseModel):
    """Runtime settings for the deployer API server.

    Attributes:
        host: Interface to bind to
        port: Port to listen on
        data_dir: Root directory for persisted deployment snapshots
        upload_dir: Directory where uploaded image archives are staged
        cors_origins: Allowed CORS origins
        debug: Enable debug logging and verbose error responses
    """

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1", description="Interface to bind to")
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=3002, description="Port to listen on"
    )
    data_dir: Path = Field(
        default=Path(".minibeast"), description="Snapshot root directory"
    )
    upload_dir: Path = Field(
        default=Path(".minibeast/uploads"), description="Upload staging directory"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v: object) -> object:
        """Accept a comma-separated string of origins."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @property
    def modules_dir(self) -> Path:
        """Directory holding one snapshot folder per module."""
        return self.data_dir / "deployments" / "modules"
