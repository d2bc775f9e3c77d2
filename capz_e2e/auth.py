# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Azure credential loading from the environment or a credentials file."""

from __future__ import annotations

import base64
from pathlib import Path

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from capz_e2e import console
from capz_e2e.errors import ConfigurationError

REQUIRED_FIELDS = ("tenant_id", "subscription_id", "client_id", "client_secret")
_FILE_KEYS = {
    "tenantId": "tenant_id",
    "subscriptionId": "subscription_id",
    "clientId": "client_id",
    "clientSecret": "client_secret",
}


class CredentialBundle(BaseModel):
    """Service principal credentials; every field must be non-empty.

    Accepts both the snake_case field names and the camelCase keys written
    by ``az ad sp create-for-rbac --sdk-auth``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    tenant_id: str = Field(min_length=1, validation_alias=AliasChoices("tenant_id", "tenantId"))
    subscription_id: str = Field(min_length=1, validation_alias=AliasChoices("subscription_id", "subscriptionId"))
    client_id: str = Field(min_length=1, validation_alias=AliasChoices("client_id", "clientId"))
    client_secret: str = Field(min_length=1, repr=False,
                               validation_alias=AliasChoices("client_secret", "clientSecret"))

    def b64(self, field: str) -> str:
        """Return the base64 encoding of one credential field."""
        return base64.b64encode(getattr(self, field).encode()).decode()


class _EnvCredentials(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AZURE_", extra="ignore")

    tenant_id: str = ""
    subscription_id: str = ""
    client_id: str = ""
    client_secret: str = ""


def _validate(data: dict, source: str) -> CredentialBundle:
    try:
        return CredentialBundle.model_validate(data)
    except ValidationError as err:
        empty = {
            _FILE_KEYS.get(str(e["loc"][0]), str(e["loc"][0])) for e in err.errors()
            if e["loc"] and e["type"] in ("missing", "string_too_short")
        }
        missing = [field for field in REQUIRED_FIELDS if field in empty]
        if missing:
            raise ConfigurationError(
                f"Azure credentials from {source} are missing required field(s): {', '.join(missing)}"
            ) from err
        raise ConfigurationError(f"Invalid Azure credentials from {source}: {err}") from err


def load_from_environment() -> CredentialBundle:
    """Load credentials from AZURE_TENANT_ID, AZURE_SUBSCRIPTION_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET.

    Raises:
        ConfigurationError: If any variable is unset or empty.
    """
    return _validate(_EnvCredentials().model_dump(), "environment")


def load_from_file(path: Path) -> CredentialBundle:
    """Load credentials from a JSON or YAML credentials file.

    Args:
        path: Path to the credentials file.

    Raises:
        ConfigurationError: If the file is unreadable, malformed, or incomplete.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as err:
        raise ConfigurationError(f"Cannot read Azure credentials file {path}: {err}") from err
    except yaml.YAMLError as err:
        raise ConfigurationError(f"Malformed Azure credentials file {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigurationError(f"Azure credentials file {path} must contain a mapping")
    return _validate(data, str(path))


def load_credentials(credentials_file: Path | None) -> CredentialBundle:
    """Load credentials, preferring the file when one is configured.

    Args:
        credentials_file: Path from ``AZURE_CREDENTIALS``, or None.

    Returns:
        A bundle with all four fields non-empty.
    """
    if credentials_file is not None:
        console.print(f"[yellow]\u2139\ufe0f  Loading Azure credentials from {credentials_file}[/yellow]")
        return load_from_file(credentials_file)
    console.print("[yellow]\u2139\ufe0f  Loading Azure credentials from environment[/yellow]")
    return load_from_environment()
