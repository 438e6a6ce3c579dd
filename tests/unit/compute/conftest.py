#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0

import pytest

from aws_compute_adapter.aio.dispatch import QueryDispatcher
from aws_compute_adapter.testing import MockHTTPTransport, create_test_dispatcher


@pytest.fixture
def transport() -> MockHTTPTransport:
    return MockHTTPTransport()


@pytest.fixture
def dispatcher(transport: MockHTTPTransport) -> QueryDispatcher:
    return create_test_dispatcher(transport)
