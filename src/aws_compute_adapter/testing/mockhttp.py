#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0

from collections import deque
from copy import copy
from typing import Any

from .._http import HTTPResponse, tuples_to_fields
from ..aio.utils import async_list
from ..interfaces.http import HTTPRequest, HTTPTransport


class MockHTTPTransport(HTTPTransport):
    """Implementation of :py:class:`.interfaces.http.HTTPTransport` solely for
    testing purposes.

    Simulates HTTP request/response behavior. Responses are queued in FIFO order and
    requests are captured for inspection.
    """

    def __init__(self) -> None:
        self._response_queue: deque[dict[str, Any]] = deque()
        self._captured_requests: list[HTTPRequest] = []
        self._closed_responses = 0

    def add_response(
        self,
        status: int = 200,
        headers: list[tuple[str, str]] | None = None,
        body: bytes | str = b"",
    ) -> None:
        """Queue a response for the next request.

        :param status: HTTP status code.
        :param headers: HTTP response headers as list of (name, value) tuples.
        :param body: Response body. Strings are encoded as UTF-8.
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._response_queue.append(
            {
                "status": status,
                "headers": headers or [],
                "body": body,
            }
        )

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Return the next queued response.

        :param request: The request including destination URI, fields, payload.
        :returns: Pre-configured HTTP response from the queue.
        :raises MockHTTPTransportError: If no responses are queued.
        """
        self._captured_requests.append(copy(request))

        if not self._response_queue:
            raise MockHTTPTransportError(
                "No responses queued in MockHTTPTransport. Use add_response() to "
                "queue responses."
            )
        response_data = self._response_queue.popleft()

        async def release() -> None:
            self._closed_responses += 1

        return HTTPResponse(
            status=response_data["status"],
            fields=tuples_to_fields(response_data["headers"]),
            body=async_list([response_data["body"]]),
            reason=None,
            release=release,
        )

    @property
    def call_count(self) -> int:
        """The number of requests made to this transport."""
        return len(self._captured_requests)

    @property
    def closed_count(self) -> int:
        """The number of returned responses that have been closed."""
        return self._closed_responses

    @property
    def pending_responses(self) -> int:
        return len(self._response_queue)

    @property
    def captured_requests(self) -> list[HTTPRequest]:
        """The list of all requests captured by this transport."""
        return self._captured_requests.copy()

    def __deepcopy__(self, memo: Any) -> "MockHTTPTransport":
        return self


class MockHTTPTransportError(Exception):
    """Exception raised by MockHTTPTransport for test setup issues."""
