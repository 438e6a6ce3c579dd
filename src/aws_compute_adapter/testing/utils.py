#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from urllib.parse import parse_qsl

from .._http import URI, HTTPRequest, tuples_to_fields
from .._identity import AWSCredentialIdentity
from ..aio.dispatch import QueryDispatcher
from ..retries import transport_retry_strategy
from ..signers import QuerySigner, SigV2QuerySigner
from ..tracing import APITracer
from .mockhttp import MockHTTPTransport

EC2_NAMESPACE = "http://ec2.amazonaws.com/doc/2012-07-20/"


def create_test_request(
    method: str = "POST",
    host: str = "ec2.us-east-1.amazonaws.com",
    path: str | None = None,
    headers: list[tuple[str, str]] | None = None,
    body: bytes = b"",
) -> HTTPRequest:
    """Create a test request with the given parameters."""
    return HTTPRequest(
        destination=URI(host=host, path=path),
        method=method,
        fields=tuples_to_fields(headers or []),
        body=body,
    )


def create_test_identity(
    account_id: str | None = "123456789012",
) -> AWSCredentialIdentity:
    return AWSCredentialIdentity(
        access_key_id="AKIDEXAMPLE",
        secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        account_id=account_id,
    )


def create_test_dispatcher(
    transport: MockHTTPTransport,
    *,
    signer: QuerySigner | None = None,
    account_id: str | None = "123456789012",
    max_attempts: int = 5,
    tracer: APITracer | None = None,
) -> QueryDispatcher:
    """A dispatcher wired to ``transport`` that retries without delay."""
    return QueryDispatcher(
        endpoint="https://ec2.us-east-1.amazonaws.com",
        signer=signer or SigV2QuerySigner(),
        identity=create_test_identity(account_id),
        api_version="2012-07-20",
        transport=transport,
        retry_strategy=transport_retry_strategy(max_attempts=max_attempts, delay=0),
        tracer=tracer,
    )


def form_parameters(request: HTTPRequest) -> dict[str, str]:
    """Decode the form body of a captured request."""
    return dict(parse_qsl(request.body.decode("utf-8"), keep_blank_values=True))


def ec2_response(action: str, inner: str) -> bytes:
    """Wrap ``inner`` in the response envelope of an EC2 ``action``."""
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<{action}Response xmlns="{EC2_NAMESPACE}">'
        "<requestId>59dbff89-35bd-4eac-99ed-be587EXAMPLE</requestId>"
        f"{inner}"
        f"</{action}Response>"
    ).encode()


def error_response(code: str, message: str) -> bytes:
    """An EC2 error envelope."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f"<Response><Errors><Error><Code>{code}</Code><Message>{message}</Message>"
        "</Error></Errors><RequestID>ea966190-f9aa-478e-9ede-example</RequestID>"
        "</Response>"
    ).encode()
