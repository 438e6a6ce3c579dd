# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
"""AWS Compute Adapter maps vendor-neutral compute operations onto the EC2 and Auto
Scaling query APIs: signing, dispatch with retries, streaming XML decoding,
convergence polling, and tracking of long-running operations."""

from ._http import URI, Field, Fields
from ._identity import AWSCredentialIdentity
from .config import AdapterConfig
from .exceptions import (
    AdapterError,
    ErrorType,
    MissingCredentialsError,
    OperationNotSupportedError,
    ProviderError,
    ResourceNotFoundError,
    RetryError,
    TaskFailedError,
)
from .query import QueryRequest
from .signers import SigV2QuerySigner, SigV4QuerySigner, SigV4Signer

__license__ = "Apache-2.0"
__version__ = "0.1.0"

__all__ = (
    "URI",
    "AWSCredentialIdentity",
    "AdapterConfig",
    "AdapterError",
    "ErrorType",
    "Field",
    "Fields",
    "MissingCredentialsError",
    "OperationNotSupportedError",
    "ProviderError",
    "QueryRequest",
    "ResourceNotFoundError",
    "RetryError",
    "SigV2QuerySigner",
    "SigV4QuerySigner",
    "SigV4Signer",
    "TaskFailedError",
)
