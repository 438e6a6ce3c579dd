#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from dataclasses import dataclass, field
from enum import Enum


class AdapterError(Exception):
    """Base exception type for all exceptions raised by aws-compute-adapter."""


class ErrorType(Enum):
    """Classification of a failed provider call."""

    AUTHENTICATION = "authentication"
    """The request signature or credentials were rejected. Never retried."""

    THROTTLING = "throttling"
    """The provider is rate limiting the caller."""

    QUOTA = "quota"
    """A resource limit on the account was exceeded."""

    GENERAL = "general"
    """Any other provider failure, including unclassified error codes."""

    COMMUNICATION = "communication"
    """The response could not be understood, or the connection failed."""


THROTTLING_CODES: frozenset[str] = frozenset({"Throttling", "RequestLimitExceeded"})
QUOTA_CODES: frozenset[str] = frozenset({"TooManyBuckets"})
AUTHENTICATION_CODES: frozenset[str] = frozenset(
    {"SignatureDoesNotMatch", "AuthFailure", "IncompleteSignature"}
)


def classify_error_code(code: str | None) -> ErrorType:
    """Map a provider error code onto the :py:class:`ErrorType` taxonomy."""
    if code is None:
        return ErrorType.GENERAL
    if code in THROTTLING_CODES:
        return ErrorType.THROTTLING
    if code in QUOTA_CODES or code.endswith("LimitExceeded"):
        return ErrorType.QUOTA
    if code in AUTHENTICATION_CODES:
        return ErrorType.AUTHENTICATION
    return ErrorType.GENERAL


@dataclass(kw_only=True)
class ProviderError(AdapterError):
    """A classified failure reported by, or while talking to, the cloud provider.

    Implements :py:class:`.interfaces.retries.ErrorRetryInfo`.
    """

    message: str = field(default="", kw_only=False)
    """The human readable message of the error."""

    status: int | None = None
    """The HTTP status of the response that produced the error, if any."""

    code: str | None = None
    """The provider error code, for example ``InvalidAMIID.NotFound``."""

    request_id: str | None = None
    """The provider's correlation id for the failed request."""

    error_type: ErrorType = ErrorType.GENERAL
    """Where the error falls in the error taxonomy."""

    is_retry_safe: bool | None = None
    """Whether the error is safe to retry.

    A value of None indicates that there is not enough information available to
    determine if a retry is safe.
    """

    retry_after: float | None = None
    """The amount of time that should pass before a retry."""

    def __post_init__(self):
        super().__init__(self.message)

    @property
    def is_throttling_error(self) -> bool:
        """Whether the error is a throttling error."""
        return self.error_type is ErrorType.THROTTLING

    @property
    def summary(self) -> str:
        return f"{self.status}/{self.request_id}/{self.code}: {self.message}"

    @classmethod
    def from_envelope(
        cls,
        *,
        status: int,
        code: str | None,
        message: str,
        request_id: str | None,
    ) -> "ProviderError":
        """Build an error from a parsed provider error envelope.

        Signature mismatches are reported as unauthorized regardless of the status
        the provider sent them with.
        """
        error_type = classify_error_code(code)
        if error_type is ErrorType.AUTHENTICATION:
            status = 401
        return cls(
            message,
            status=status,
            code=code,
            request_id=request_id,
            error_type=error_type,
            is_retry_safe=error_type is ErrorType.THROTTLING,
        )


class RetryError(AdapterError):
    """Raised by retry strategies when no further attempt is allowed."""


class MissingCredentialsError(AdapterError, ValueError):
    """Credentials are absent, incomplete, or expired."""


class MissingExpectedParameterError(AdapterError, ValueError):
    """Some signing schemes require specific signing properties to be present."""


class OperationNotSupportedError(AdapterError):
    """The requested operation cannot be performed on the target resource."""


class TaskFailedError(AdapterError):
    """A tracked asynchronous operation finished with an error."""


class ResourceNotFoundError(AdapterError):
    """A resource being waited on disappeared or failed."""
