"""Resolved connection configuration for a target database."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, SecretStr


class ConnectionConfig(BaseModel):
    """Live configuration of a saved connection.

    Credentials are ``SecretStr`` so they never appear in reprs or logs.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    db_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    ssl: bool = False
    connection_string: Optional[SecretStr] = None
    is_active: bool = True
