#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
import configparser
import os
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any, ClassVar, Literal

from ._identity import AWSCredentialIdentity
from .exceptions import MissingCredentialsError

SOURCE_CONSTRUCTOR = "constructor"
SOURCE_ENVIRONMENT = "environment"
SOURCE_CREDENTIALS_FILE = "credentials_file"
SOURCE_CONFIG_FILE = "config_file"
SOURCE_DEFAULT = "default"
SOURCE_IN_CODE_UPDATE = "in_code_update"

SourceType = Literal[
    "constructor",
    "environment",
    "credentials_file",
    "config_file",
    "default",
    "in_code_update",
]

type ConfigLoader = Callable[[], Awaitable[Mapping[str, Any]]]


class ConfigValue:
    """Configuration value with metadata about its source"""

    def __init__(self, value: Any, source: SourceType):
        self.value = value
        self.source = source

    def __repr__(self) -> str:
        return f"ConfigValue(value={self.value!r}, source={self.source!r})"


class AdapterConfig:
    """Adapter configuration with precedence-based resolution.

    Values come from, in order of precedence: constructor arguments, environment
    variables, the active profile of ``~/.aws/config``, the active profile of
    ``~/.aws/credentials``, and finally the field default. The sentinel default
    (``...``) distinguishes "not provided" from "explicitly set to None".

    Each entry of ``CONFIG_FIELDS`` may declare:

    * ``default``: required, used when no source provides a value.
    * ``type``: required, the expected type after conversion.
    * ``env_var``: optional environment variable name.
    * ``config_key``: optional config/credentials file key.
    * ``converter``: optional callable applied to string values read from the
      environment or files.
    * ``validator``: optional name of a validation method.
    """

    CONFIG_FIELDS: ClassVar[dict[str, dict[str, Any]]] = {
        "aws_access_key_id": {
            "env_var": "AWS_ACCESS_KEY_ID",
            "config_key": "aws_access_key_id",
            "default": None,
            "type": str | None,
        },
        "aws_secret_access_key": {
            "env_var": "AWS_SECRET_ACCESS_KEY",
            "config_key": "aws_secret_access_key",
            "default": None,
            "type": str | None,
        },
        "aws_session_token": {
            "env_var": "AWS_SESSION_TOKEN",
            "config_key": "aws_session_token",
            "default": None,
            "type": str | None,
        },
        "account_id": {
            "env_var": "AWS_ACCOUNT_ID",
            "config_key": "aws_account_id",
            "default": None,
            "type": str | None,
        },
        "region": {
            "env_var": "AWS_REGION",
            "config_key": "region",
            "default": None,
            "validator": "_validate_region",
        },
        "endpoint_uri": {
            "env_var": "AWS_ENDPOINT_URL",
            "config_key": "endpoint_url",
            "default": None,
            "type": str | None,
        },
        "ec2_api_version": {
            "default": "2012-07-20",
            "type": str,
        },
        "autoscaling_api_version": {
            "default": "2011-01-01",
            "type": str,
        },
        "transport_max_attempts": {
            "env_var": "AWS_MAX_ATTEMPTS",
            "config_key": "max_attempts",
            "default": 5,
            "converter": int,
            "validator": "_validate_positive_number",
        },
        "transport_retry_delay": {
            "default": 5.0,
            "converter": float,
            "validator": "_validate_non_negative_number",
        },
        "http_timeout": {
            "default": 60.0,
            "converter": float,
            "validator": "_validate_positive_number",
        },
    }

    def __init__(
        self,
        *,
        aws_access_key_id: str | None = ...,  # type: ignore[assignment]
        aws_secret_access_key: str | None = ...,  # type: ignore[assignment]
        aws_session_token: str | None = ...,  # type: ignore[assignment]
        account_id: str | None = ...,  # type: ignore[assignment]
        region: str | None = ...,  # type: ignore[assignment]
        endpoint_uri: str | None = ...,  # type: ignore[assignment]
        ec2_api_version: str = ...,  # type: ignore[assignment]
        autoscaling_api_version: str = ...,  # type: ignore[assignment]
        transport_max_attempts: int = ...,  # type: ignore[assignment]
        transport_retry_delay: float = ...,  # type: ignore[assignment]
        http_timeout: float = ...,  # type: ignore[assignment]
    ):
        self._constructor_values = {
            k: v for k, v in locals().items() if k != "self" and v is not ...
        }
        self._resolved = False

    async def resolve(
        self,
        *,
        environment_loader: ConfigLoader | None = None,
        config_file_loader: ConfigLoader | None = None,
        credentials_file_loader: ConfigLoader | None = None,
    ) -> None:
        """Resolve configuration from all sources.

        :param environment_loader: Custom environment loader function.
        :param config_file_loader: Custom config file loader function.
        :param credentials_file_loader: Custom credentials file loader function.
        """
        if self._resolved:
            raise RuntimeError(
                "Config has already been resolved. Multiple calls to resolve() are "
                "not allowed."
            )

        env_values, config_file_values, credentials_file_values = await asyncio.gather(
            (environment_loader or self._load_environment_values)(),
            (config_file_loader or self._load_config_file_values)(),
            (credentials_file_loader or self._load_credentials_file_values)(),
        )

        for field_name in self.CONFIG_FIELDS:
            resolved_value = self._resolve_field(
                field_name,
                self._constructor_values,
                env_values,
                config_file_values,
                credentials_file_values,
            )
            setattr(self, f"_{field_name}", resolved_value)

        self._resolved = True

    async def _load_environment_values(self) -> Mapping[str, str]:
        return os.environ

    async def _load_config_file_values(self) -> dict[str, Any]:
        def _read_config() -> dict[str, str]:
            config_path = Path.home() / ".aws" / "config"
            if not config_path.exists():
                return {}

            parser = configparser.ConfigParser()
            parser.read(config_path)

            profile = os.environ.get("AWS_PROFILE", "default")
            section_name = f"profile {profile}" if profile != "default" else "default"

            if section_name not in parser:
                return {}

            return dict(parser[section_name])

        return await asyncio.to_thread(_read_config)

    async def _load_credentials_file_values(self) -> dict[str, Any]:
        def _read_credentials() -> dict[str, str]:
            credentials_path = Path.home() / ".aws" / "credentials"
            if not credentials_path.exists():
                return {}

            parser = configparser.ConfigParser()
            parser.read(credentials_path)

            profile = os.environ.get("AWS_PROFILE", "default")

            if profile not in parser:
                return {}

            return dict(parser[profile])

        return await asyncio.to_thread(_read_credentials)

    def _resolve_field(
        self,
        field_name: str,
        constructor_values: Mapping[str, Any],
        env_values: Mapping[str, Any],
        config_file_values: Mapping[str, Any],
        credentials_file_values: Mapping[str, Any],
    ) -> ConfigValue:
        field_config = self.CONFIG_FIELDS[field_name]
        env_var = field_config.get("env_var")
        config_key = field_config.get("config_key")

        if field_name in constructor_values:
            value = constructor_values[field_name]
            source = SOURCE_CONSTRUCTOR
        elif env_var and env_var in env_values:
            value = env_values[env_var]
            source = SOURCE_ENVIRONMENT
        elif config_key and config_key in config_file_values:
            value = config_file_values[config_key]
            source = SOURCE_CONFIG_FILE
        elif config_key and config_key in credentials_file_values:
            value = credentials_file_values[config_key]
            source = SOURCE_CREDENTIALS_FILE
        else:
            value = field_config["default"]
            source = SOURCE_DEFAULT

        converter = field_config.get("converter")
        if converter is not None and isinstance(value, str):
            try:
                value = converter(value)
            except ValueError as e:
                raise ValueError(
                    f"{field_name} could not be parsed from {source}: {value!r}"
                ) from e

        if validator := field_config.get("validator"):
            getattr(self, validator)(value, field_name)
        else:
            expected_type = field_config["type"]
            if not isinstance(value, expected_type):
                actual_name = type(value).__name__
                expected_name = getattr(expected_type, "__name__", str(expected_type))
                raise TypeError(
                    f"{field_name} must be {expected_name}, got {actual_name}"
                )

        return ConfigValue(value, source)

    def _validate_region(self, value: Any, field_name: str) -> None:
        if value is None:
            return
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{field_name} must be a non-empty string")

    def _validate_positive_number(self, value: Any, field_name: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
            raise ValueError(f"{field_name} must be a positive number, got {value!r}")

    def _validate_non_negative_number(self, value: Any, field_name: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
            raise ValueError(
                f"{field_name} must be a non-negative number, got {value!r}"
            )

    def get_config_value_object(self, field_name: str) -> ConfigValue:
        """Get the raw ConfigValue object for a field"""
        if not self._resolved:
            raise RuntimeError("Config must be resolved before accessing values")
        return getattr(self, f"_{field_name}")

    def credential_identity(self) -> AWSCredentialIdentity:
        """Build the signing identity from the resolved credentials.

        :raises MissingCredentialsError: If the access key id or secret is missing.
        """
        if not self.aws_access_key_id or not self.aws_secret_access_key:
            raise MissingCredentialsError(
                "No AWS credentials were found. Set aws_access_key_id and "
                "aws_secret_access_key, or the AWS_ACCESS_KEY_ID and "
                "AWS_SECRET_ACCESS_KEY environment variables."
            )
        return AWSCredentialIdentity(
            access_key_id=self.aws_access_key_id,
            secret_access_key=self.aws_secret_access_key,
            session_token=self.aws_session_token,
            account_id=self.account_id,
        )

    @property
    def aws_access_key_id(self) -> str | None:
        return self._aws_access_key_id.value

    @aws_access_key_id.setter
    def aws_access_key_id(self, value: str | None) -> None:
        self._aws_access_key_id = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def aws_secret_access_key(self) -> str | None:
        return self._aws_secret_access_key.value

    @aws_secret_access_key.setter
    def aws_secret_access_key(self, value: str | None) -> None:
        self._aws_secret_access_key = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def aws_session_token(self) -> str | None:
        return self._aws_session_token.value

    @aws_session_token.setter
    def aws_session_token(self, value: str | None) -> None:
        self._aws_session_token = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def account_id(self) -> str | None:
        return self._account_id.value

    @account_id.setter
    def account_id(self, value: str | None) -> None:
        self._account_id = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def region(self) -> str | None:
        return self._region.value

    @region.setter
    def region(self, value: str | None) -> None:
        self._region = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def endpoint_uri(self) -> str | None:
        return self._endpoint_uri.value

    @endpoint_uri.setter
    def endpoint_uri(self, value: str | None) -> None:
        self._endpoint_uri = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def ec2_api_version(self) -> str:
        return self._ec2_api_version.value

    @ec2_api_version.setter
    def ec2_api_version(self, value: str) -> None:
        self._ec2_api_version = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def autoscaling_api_version(self) -> str:
        return self._autoscaling_api_version.value

    @autoscaling_api_version.setter
    def autoscaling_api_version(self, value: str) -> None:
        self._autoscaling_api_version = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def transport_max_attempts(self) -> int:
        return self._transport_max_attempts.value

    @transport_max_attempts.setter
    def transport_max_attempts(self, value: int) -> None:
        self._transport_max_attempts = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def transport_retry_delay(self) -> float:
        return self._transport_retry_delay.value

    @transport_retry_delay.setter
    def transport_retry_delay(self, value: float) -> None:
        self._transport_retry_delay = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def http_timeout(self) -> float:
        return self._http_timeout.value

    @http_timeout.setter
    def http_timeout(self, value: float) -> None:
        self._http_timeout = ConfigValue(value, SOURCE_IN_CODE_UPDATE)
