#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from collections import OrderedDict
from collections.abc import AsyncIterable, Iterator
from typing import Protocol, runtime_checkable


class Field(Protocol):
    """A name-value pair representing a single header in a request or response.

    All field names are case insensitive and case-variance must be treated as
    equivalent. Names may be normalized but should be preserved for accuracy during
    transmission.
    """

    name: str
    values: list[str]

    def add(self, value: str) -> None:
        """Append a value to a field."""
        ...

    def set(self, values: list[str]) -> None:
        """Overwrite existing field values."""
        ...

    def as_string(self, delimiter: str = ",") -> str:
        """Serialize the ``Field``'s values into a single line string."""
        ...

    def as_tuples(self) -> list[tuple[str, str]]:
        """Get list of ``name``, ``value`` tuples where each tuple represents one
        value."""
        ...


class Fields(Protocol):
    """Case-insensitive mapping of header fields keyed by name."""

    entries: OrderedDict[str, Field]
    encoding: str = "utf-8"

    def set_field(self, field: Field) -> None:
        """Alias for __setitem__ to utilize the field.name for the entry key."""
        ...

    def __setitem__(self, name: str, field: Field) -> None: ...

    def __getitem__(self, name: str) -> Field: ...

    def __delitem__(self, name: str) -> None: ...

    def __contains__(self, key: str) -> bool: ...

    def __iter__(self) -> Iterator[Field]: ...

    def __len__(self) -> int: ...


@runtime_checkable
class URI(Protocol):
    """Universal Resource Identifier, target location for a request."""

    scheme: str
    host: str
    port: int | None
    path: str | None
    query: str | None

    def build(self) -> str:
        """Construct URI string representation."""
        ...

    @property
    def netloc(self) -> str:
        """Construct netloc string in format ``{host}:{port}``"""
        ...


class HTTPRequest(Protocol):
    """The fully signed HTTP message handed to a transport.

    :param destination: The URI where the request should be sent to.
    :param method: The HTTP method of the request, for example "POST".
    :param fields: ``Fields`` object containing HTTP headers.
    :param body: The complete request payload.
    """

    destination: URI
    method: str
    fields: Fields
    body: bytes


class HTTPResponse(Protocol):
    """HTTP primitives returned from a transport.

    The body is streamed. Callers must ``close()`` the response once they are done
    with it so that the underlying connection and session are released.
    """

    @property
    def status(self) -> int:
        """The 3 digit response status code (1xx, 2xx, 3xx, 4xx, 5xx)."""
        ...

    @property
    def fields(self) -> Fields:
        """``Fields`` object containing HTTP headers."""
        ...

    @property
    def body(self) -> AsyncIterable[bytes]:
        """The response payload as an async stream of byte chunks."""
        ...

    @property
    def reason(self) -> str | None:
        """Optional string provided by the server explaining the status."""
        ...

    async def consume_body_async(self) -> bytes:
        """Read the remaining body and return it as bytes."""
        ...

    async def close(self) -> None:
        """Release the connection backing the response."""
        ...


class HTTPTransport(Protocol):
    """An asynchronous HTTP transport."""

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send HTTP request over the wire and return the response.

        :param request: The request including destination URI, fields, payload.
        """
        ...
