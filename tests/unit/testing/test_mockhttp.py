#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import pytest

from aws_compute_adapter.testing import (
    MockHTTPTransport,
    MockHTTPTransportError,
    create_test_request,
)


async def test_responses_are_returned_in_order() -> None:
    transport = MockHTTPTransport()
    transport.add_response(status=200, headers=[("x-amzn-requestid", "1")], body="a")
    transport.add_response(status=503, body=b"b")

    first = await transport.send(create_test_request())
    second = await transport.send(create_test_request(path="/other"))

    assert first.status == 200
    assert first.fields["x-amzn-requestid"].as_string() == "1"
    assert await first.consume_body_async() == b"a"
    assert second.status == 503
    assert await second.consume_body_async() == b"b"
    assert transport.call_count == 2
    assert transport.pending_responses == 0
    assert transport.captured_requests[1].destination.path == "/other"


async def test_empty_queue_raises() -> None:
    transport = MockHTTPTransport()
    with pytest.raises(MockHTTPTransportError):
        await transport.send(create_test_request())
    assert transport.call_count == 1


async def test_close_is_counted_once() -> None:
    transport = MockHTTPTransport()
    transport.add_response()

    response = await transport.send(create_test_request())
    await response.close()
    await response.close()

    assert transport.closed_count == 1


def test_captured_requests_is_a_copy() -> None:
    transport = MockHTTPTransport()
    transport.captured_requests.append(create_test_request())
    assert transport.call_count == 0
