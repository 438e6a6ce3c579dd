# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""Shared utilities for aws-compute-adapter tests."""

from .mockhttp import MockHTTPTransport, MockHTTPTransportError
from .utils import (
    create_test_dispatcher,
    create_test_identity,
    create_test_request,
    ec2_response,
    error_response,
    form_parameters,
)

__all__ = (
    "MockHTTPTransport",
    "MockHTTPTransportError",
    "create_test_dispatcher",
    "create_test_identity",
    "create_test_request",
    "ec2_response",
    "error_response",
    "form_parameters",
)
