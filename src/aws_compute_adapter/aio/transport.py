#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from collections.abc import Callable
from itertools import chain

import aiohttp

from .._http import Field, Fields, HTTPResponse
from ..interfaces.http import HTTPRequest, HTTPTransport

CHUNK_SIZE = 64 * 1024


class AIOHTTPTransport(HTTPTransport):
    """Implementation of :py:class:`.interfaces.http.HTTPTransport` using aiohttp.

    Every request gets its own session. The session is torn down when the returned
    response is closed, so no connection outlives a single dispatch.
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        _session_factory: Callable[[], aiohttp.ClientSession] | None = None,
    ) -> None:
        """
        :param timeout: Total seconds allowed for one request, including reading the
        body.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session_factory = _session_factory or self._new_session

    def _new_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=self._timeout)

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send HTTP request using a fresh aiohttp session.

        :param request: The request including destination URI, fields, payload.
        """
        headers_list = list(
            chain.from_iterable(fld.as_tuples() for fld in request.fields)
        )
        session = self._session_factory()
        try:
            aiohttp_resp = await session.request(
                method=request.method,
                url=request.destination.build(),
                headers=headers_list,
                data=request.body,
            )
        except BaseException:
            await session.close()
            raise

        async def release() -> None:
            aiohttp_resp.release()
            await session.close()

        return HTTPResponse(
            status=aiohttp_resp.status,
            fields=self._marshal_fields(aiohttp_resp),
            body=aiohttp_resp.content.iter_chunked(CHUNK_SIZE),
            reason=aiohttp_resp.reason,
            release=release,
        )

    def _marshal_fields(self, aiohttp_resp: aiohttp.ClientResponse) -> Fields:
        headers = Fields()
        for header_name, header_val in aiohttp_resp.headers.items():
            try:
                headers[header_name].add(header_val)
            except KeyError:
                headers[header_name] = Field(name=header_name, values=[header_val])
        return headers
