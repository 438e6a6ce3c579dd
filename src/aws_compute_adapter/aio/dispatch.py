#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import logging
from asyncio import sleep
from collections.abc import AsyncIterator

import aiohttp
from lxml import etree

from .._http import URI
from ..decoders import StreamingItemDecoder, XmlDocument, parse_error_envelope
from ..exceptions import ErrorType, ProviderError, RetryError
from ..interfaces.http import HTTPResponse, HTTPTransport
from ..interfaces.identity import AWSCredentialsIdentity
from ..interfaces.retries import RetryStrategy
from ..query import QueryRequest, SignedEnvelope, encode_form
from ..retries import transport_retry_strategy
from ..signers import QuerySigner
from ..tracing import APITracer
from .transport import AIOHTTPTransport

_LOGGER = logging.getLogger(__name__)
_WIRE_LOGGER = logging.getLogger("aws_compute_adapter.wire")

SERVICE_UNAVAILABLE_MESSAGE = "Cloud service is currently unavailable."
SERVER_ERROR_MESSAGE = (
    "The cloud service encountered a server error while processing your request."
)
REDACTED_PARAMETERS = frozenset({"Signature", "AWSAccessKeyId", "SecurityToken"})


class QueryDispatcher:
    """Signs, sends, and classifies query API calls against one endpoint.

    Each dispatch emits one trace event, is retried on transient failures according
    to the retry strategy, and releases its HTTP session before returning. Any
    non-2xx outcome surfaces as exactly one :py:class:`ProviderError`.
    """

    def __init__(
        self,
        *,
        endpoint: URI | str,
        signer: QuerySigner,
        identity: AWSCredentialsIdentity,
        api_version: str,
        transport: HTTPTransport | None = None,
        retry_strategy: RetryStrategy | None = None,
        tracer: APITracer | None = None,
    ):
        """
        :param endpoint: The service endpoint, for example
            ``https://ec2.us-east-1.amazonaws.com``.
        :param signer: Signer applied to every attempt.
        :param identity: Credentials used for signing.
        :param api_version: Value of the ``Version`` parameter.
        :param transport: HTTP transport. Defaults to :py:class:`AIOHTTPTransport`.
        :param retry_strategy: Strategy for transient failures. Defaults to five
            attempts five seconds apart.
        :param tracer: Receives one event per dispatch.
        """
        if not isinstance(endpoint, URI):
            endpoint = URI.from_url(endpoint)
        self.endpoint = endpoint
        self.signer = signer
        self.identity = identity
        self.api_version = api_version
        self.transport = transport or AIOHTTPTransport()
        self.retry_strategy = retry_strategy or transport_retry_strategy()
        self.tracer = tracer or APITracer()

    async def invoke(self, request: QueryRequest) -> XmlDocument:
        """Dispatch ``request`` and parse the whole response body.

        :raises ProviderError: If the call fails or the body cannot be parsed.
        """
        response = await self._dispatch(request)
        try:
            body = await response.consume_body_async()
        finally:
            await response.close()
        _WIRE_LOGGER.debug("<<< %s", body.decode("utf-8", errors="replace"))
        try:
            return XmlDocument.from_bytes(body)
        except etree.XMLSyntaxError as e:
            raise ProviderError(
                f"Unable to parse the response to {request.action}: {e}",
                status=response.status,
                error_type=ErrorType.COMMUNICATION,
            ) from e

    async def stream[T](
        self, request: QueryRequest, decoder: StreamingItemDecoder[T]
    ) -> AsyncIterator[T]:
        """Dispatch ``request`` and yield records as the body is decoded.

        The connection stays open while the caller iterates and is released when
        iteration ends, fails, or is abandoned.

        :raises ProviderError: If the call fails or the body cannot be parsed.
        """
        response = await self._dispatch(request)
        try:
            async for record in decoder.decode(response.body):
                yield record
        except etree.XMLSyntaxError as e:
            raise ProviderError(
                f"Unable to parse the response to {request.action}: {e}",
                status=response.status,
                error_type=ErrorType.COMMUNICATION,
            ) from e
        finally:
            await response.close()

    async def _dispatch(self, request: QueryRequest) -> HTTPResponse:
        self.tracer.trace(request.action)
        retry_token = self.retry_strategy.acquire_initial_retry_token(
            token_scope=request.action
        )

        while True:
            if retry_token.retry_delay:
                await sleep(retry_token.retry_delay)

            try:
                response = await self._attempt(request)
            except ProviderError as error:
                try:
                    retry_token = self.retry_strategy.refresh_retry_token_for_retry(
                        token_to_renew=retry_token,
                        error=error,
                    )
                except RetryError:
                    if error.is_retry_safe:
                        _LOGGER.error(
                            "Giving up on %s after %s attempts: %s",
                            request.action,
                            retry_token.retry_count + 1,
                            error.message,
                        )
                    raise error

                _LOGGER.debug(
                    "Retry needed. Attempting request #%s in %.4f seconds.",
                    retry_token.retry_count + 1,
                    retry_token.retry_delay,
                )
            else:
                self.retry_strategy.record_success(token=retry_token)
                return response

    async def _attempt(self, request: QueryRequest) -> HTTPResponse:
        envelope = self.signer.sign_query(
            request=request,
            destination=self.endpoint,
            identity=self.identity,
            api_version=self.api_version,
        )
        self._log_request(envelope)
        try:
            response = await self.transport.send(envelope.to_http_request())
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ProviderError(
                f"Unable to reach {self.endpoint.host} for {request.action}: {e}",
                error_type=ErrorType.COMMUNICATION,
            ) from e

        _WIRE_LOGGER.debug("<<< %s %s", response.status, response.reason or "")
        if 200 <= response.status < 300:
            return response

        try:
            body = await response.consume_body_async()
        finally:
            await response.close()
        _WIRE_LOGGER.debug("<<< %s", body.decode("utf-8", errors="replace"))
        _LOGGER.debug("Received %s from %s", response.status, request.action)
        raise self._classify(response.status, body)

    def _classify(self, status: int, body: bytes) -> ProviderError:
        code, message, request_id = parse_error_envelope(body)
        text = body.decode("utf-8", errors="replace").strip()

        if status == 503:
            return ProviderError(
                SERVICE_UNAVAILABLE_MESSAGE,
                status=status,
                code=code,
                request_id=request_id,
                is_retry_safe=True,
            )
        if status == 500:
            return ProviderError(
                f"{SERVER_ERROR_MESSAGE} Response from server was:\n{text}",
                status=status,
                code=code,
                request_id=request_id,
                is_retry_safe=True,
            )
        if status == 403:
            if code is None and message is None:
                message = f"API Access Denied (403): {' / '.join(text.splitlines())}"
            error = ProviderError.from_envelope(
                status=status,
                code=code,
                message=message or code or "",
                request_id=request_id,
            )
            error.error_type = ErrorType.AUTHENTICATION
            error.is_retry_safe = False
            return error
        if message is None:
            return ProviderError(
                "Unable to identify error condition: "
                f"{status}/{request_id}/{code}",
                status=status,
                code=code,
                request_id=request_id,
                error_type=ErrorType.COMMUNICATION,
            )
        return ProviderError.from_envelope(
            status=status, code=code, message=message, request_id=request_id
        )

    def _log_request(self, envelope: SignedEnvelope) -> None:
        if not _WIRE_LOGGER.isEnabledFor(logging.DEBUG):
            return
        _WIRE_LOGGER.debug(">>> POST %s", envelope.destination.build())
        _WIRE_LOGGER.debug(
            ">>> %s",
            encode_form(
                (name, "********" if name in REDACTED_PARAMETERS else value)
                for name, value in envelope.parameters
            ),
        )
