#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
# ruff: noqa: S101
import base64
import datetime
import hmac
import re
from copy import deepcopy
from hashlib import sha1, sha256
from typing import Protocol, Required, TypedDict
from urllib.parse import parse_qsl, quote, unquote

from ._http import URI, Field, Fields, HTTPRequest
from .exceptions import MissingCredentialsError, MissingExpectedParameterError
from .interfaces.identity import AWSCredentialsIdentity
from .query import QueryRequest, SignedEnvelope, aws_percent_encode, form_fields

HEADERS_EXCLUDED_FROM_SIGNING: tuple[str, ...] = (
    "accept",
    "accept-encoding",
    "authorization",
    "connection",
    "expect",
    "user-agent",
    "x-amzn-trace-id",
)
DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}

SIGV4_TIMESTAMP_FORMAT: str = "%Y%m%dT%H%M%SZ"
EMPTY_SHA256_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

SIGV2_SIGNATURE_METHOD = "HmacSHA256"
SIGV2_SIGNATURE_VERSION = "2"


def _validate_identity(identity: AWSCredentialsIdentity) -> None:
    """Perform runtime and expiration checks before attempting signing."""
    if not isinstance(identity, AWSCredentialsIdentity):  # pyright: ignore
        raise MissingCredentialsError(
            "Received unexpected value for identity parameter. Expected "
            f"AWSCredentialIdentity but received {type(identity)}."
        )
    if not identity.access_key_id or not identity.secret_access_key:
        raise MissingCredentialsError(
            "Both an access key id and a secret access key are required to sign "
            "requests."
        )
    if identity.is_expired:
        raise MissingCredentialsError(
            f"Provided identity expired at {identity.expiration}. Please "
            "refresh the credentials or update the expiration parameter."
        )


class QuerySigner(Protocol):
    """Turns a :py:class:`QueryRequest` into a transmittable
    :py:class:`SignedEnvelope`."""

    def sign_query(
        self,
        *,
        request: QueryRequest,
        destination: URI,
        identity: AWSCredentialsIdentity,
        api_version: str,
        date: datetime.datetime | None = None,
    ) -> SignedEnvelope: ...


class SigV2QuerySigner:
    """Signer for the legacy per-parameter query signature (version 2).

    The signature covers every parameter, so it is carried in the form body rather
    than a header.
    """

    def sign_query(
        self,
        *,
        request: QueryRequest,
        destination: URI,
        identity: AWSCredentialsIdentity,
        api_version: str,
        date: datetime.datetime | None = None,
    ) -> SignedEnvelope:
        _validate_identity(identity)
        timestamp = format_sigv2_timestamp(date or datetime.datetime.now(datetime.UTC))
        standard = {
            "AWSAccessKeyId": identity.access_key_id,
            "SignatureVersion": SIGV2_SIGNATURE_VERSION,
            "SignatureMethod": SIGV2_SIGNATURE_METHOD,
            "Timestamp": timestamp,
            "Version": api_version,
        }
        if identity.session_token is not None:
            standard["SecurityToken"] = identity.session_token
        parameters = request.with_parameters(standard).pairs()

        signature = self.signature(
            string_to_sign=self.string_to_sign(
                method="POST", destination=destination, parameters=parameters
            ),
            secret_key=identity.secret_access_key,
        )
        return SignedEnvelope(
            action=request.action,
            destination=destination,
            parameters=(*parameters, ("Signature", signature)),
            fields=form_fields(),
            signature=signature,
            timestamp=timestamp,
        )

    def string_to_sign(
        self,
        *,
        method: str,
        destination: URI,
        parameters: tuple[tuple[str, str], ...],
    ) -> str:
        """Build the version 2 string to sign.

        Defined as:
            <HTTPMethod>\n
            <lower-case host, with ":port" unless it is the scheme default>\n
            <encoded path, "/" when empty>\n
            <sorted, encoded name=value pairs joined by "&">
        """
        canonical_query = "&".join(
            f"{aws_percent_encode(name)}={aws_percent_encode(value)}"
            for name, value in sorted(parameters)
        )
        path = aws_percent_encode(destination.path or "/", path=True)
        return (
            f"{method.upper()}\n"
            f"{host_header_value(destination).lower()}\n"
            f"{path}\n"
            f"{canonical_query}"
        )

    def signature(self, *, string_to_sign: str, secret_key: str) -> str:
        digest = hmac.new(
            secret_key.encode(), string_to_sign.encode(), digestmod=sha256
        ).digest()
        return base64.b64encode(digest).decode()


def host_header_value(uri: URI) -> str:
    """The Host header value for ``uri``, omitting the scheme's default port."""
    if uri.port is not None and DEFAULT_PORTS.get(uri.scheme) == uri.port:
        return uri.host
    return uri.netloc

def format_sigv2_timestamp(date: datetime.datetime) -> str:
    """Format a datetime as ``yyyy-MM-ddTHH:mm:ss.SSSZ`` in UTC."""
    date = date.astimezone(datetime.UTC)
    return f"{date.strftime('%Y-%m-%dT%H:%M:%S')}.{date.microsecond // 1000:03d}Z"


def sign_upload_policy(policy_document: str, secret_key: str) -> tuple[str, str]:
    """Encode an upload policy and sign it with HMAC-SHA1.

    :returns: The base64 policy and the base64 signature over that encoded policy.
    """
    encoded_policy = base64.b64encode(policy_document.encode()).decode()
    digest = hmac.new(secret_key.encode(), encoded_policy.encode(), sha1).digest()
    return encoded_policy, base64.b64encode(digest).decode()


class SigV4SigningProperties(TypedDict, total=False):
    region: Required[str]
    service: Required[str]
    date: str
    uri_encode_path: bool


class SigV4Signer:
    """Request signer for applying the AWS Signature Version 4 algorithm."""

    def sign(
        self,
        *,
        signing_properties: SigV4SigningProperties,
        http_request: HTTPRequest,
        identity: AWSCredentialsIdentity,
    ) -> HTTPRequest:
        """Generate and apply a SigV4 Signature to a copy of the supplied request.

        :param signing_properties: SigV4SigningProperties to define signing primitives
            such as the target service, region, and date.
        :param http_request: An HTTPRequest to sign prior to sending to the service.
        :param identity: A set of credentials representing an AWS Identity or role
            capacity.
        """
        _validate_identity(identity)
        new_signing_properties = self._normalize_signing_properties(
            signing_properties=signing_properties
        )
        new_request = deepcopy(http_request)
        self._apply_required_fields(
            request=new_request,
            signing_properties=new_signing_properties,
            identity=identity,
        )

        canonical_request = self.canonical_request(
            signing_properties=new_signing_properties,
            request=new_request,
        )
        string_to_sign = self.string_to_sign(
            canonical_request=canonical_request,
            signing_properties=new_signing_properties,
        )
        signature = self._signature(
            string_to_sign=string_to_sign,
            secret_key=identity.secret_access_key,
            signing_properties=new_signing_properties,
        )

        signing_fields = self._normalize_signing_fields(request=new_request)
        credential_scope = self._scope(signing_properties=new_signing_properties)
        credential = f"{identity.access_key_id}/{credential_scope}"
        authorization = self.generate_authorization_field(
            credential=credential,
            signed_headers=list(signing_fields.keys()),
            signature=signature,
        )
        new_request.fields.set_field(authorization)
        return new_request

    def generate_authorization_field(
        self, *, credential: str, signed_headers: list[str], signature: str
    ) -> Field:
        """Generate the `Authorization` field.

        :param credential:
            Credential scope string for generating the Authorization header.
            Defined as:
                <access_key>/<date>/<region>/<service>/<request_type>
        :param signed_headers:
            A list of the field names used in signing.
        :param signature:
            Final hash of the SigV4 signing algorithm generated from the
            canonical request and string to sign.
        """
        signed_headers_str = ";".join(signed_headers)
        auth_str = (
            f"AWS4-HMAC-SHA256 Credential={credential}, "
            f"SignedHeaders={signed_headers_str}, Signature={signature}"
        )
        return Field(name="Authorization", values=[auth_str])

    def _signature(
        self,
        *,
        string_to_sign: str,
        secret_key: str,
        signing_properties: SigV4SigningProperties,
    ) -> str:
        # DateKey              = HMAC-SHA256("AWS4"+"<SecretAccessKey>", "<YYYYMMDD>")
        # DateRegionKey        = HMAC-SHA256(<DateKey>, "<aws-region>")
        # DateRegionServiceKey = HMAC-SHA256(<DateRegionKey>, "<aws-service>")
        # SigningKey = HMAC-SHA256(<DateRegionServiceKey>, "aws4_request")
        assert "date" in signing_properties
        k_date = self._hash(
            key=f"AWS4{secret_key}".encode(), value=signing_properties["date"][0:8]
        )
        k_region = self._hash(key=k_date, value=signing_properties["region"])
        k_service = self._hash(key=k_region, value=signing_properties["service"])
        k_signing = self._hash(key=k_service, value="aws4_request")

        return self._hash(key=k_signing, value=string_to_sign).hex()

    def _hash(self, key: bytes, value: str) -> bytes:
        return hmac.new(key=key, msg=value.encode(), digestmod=sha256).digest()

    def _normalize_signing_properties(
        self, *, signing_properties: SigV4SigningProperties
    ) -> SigV4SigningProperties:
        new_signing_properties = SigV4SigningProperties(**signing_properties)
        if "date" not in new_signing_properties:
            date_obj = datetime.datetime.now(datetime.UTC)
            new_signing_properties["date"] = date_obj.strftime(SIGV4_TIMESTAMP_FORMAT)
        return new_signing_properties

    def _apply_required_fields(
        self,
        *,
        request: HTTPRequest,
        signing_properties: SigV4SigningProperties,
        identity: AWSCredentialsIdentity,
    ) -> None:
        # X-Amz-Date is only added when neither X-Amz-Date nor Date are present.
        if "Date" not in request.fields and "X-Amz-Date" not in request.fields:
            assert "date" in signing_properties
            request.fields.set_field(
                Field(name="X-Amz-Date", values=[signing_properties["date"]])
            )
        if (
            "X-Amz-Security-Token" not in request.fields
            and identity.session_token is not None
        ):
            request.fields.set_field(
                Field(name="X-Amz-Security-Token", values=[identity.session_token])
            )

    def canonical_request(
        self, *, signing_properties: SigV4SigningProperties, request: HTTPRequest
    ) -> str:
        """The canonical request is a standardized string laying out the components used
        in the SigV4 signing algorithm. This is useful to quickly compare inputs to find
        signature mismatches and unintended variances.

        The SigV4 specification defines the canonical request to be:
            <HTTPMethod>\n
            <CanonicalURI>\n
            <CanonicalQueryString>\n
            <CanonicalHeaders>\n
            <SignedHeaders>\n
            <HashedPayload>

        :param signing_properties:
            SigV4SigningProperties to define signing primitives such as
            the target service, region, and date.
        :param request:
            An HTTPRequest to use for generating a SigV4 signature.
        """
        canonical_path = normalize_path(
            request.destination.path,
            uri_encode=signing_properties.get("uri_encode_path", True),
        )
        canonical_query = self._format_canonical_query(query=request.destination.query)
        normalized_fields = self._normalize_signing_fields(request=request)
        canonical_fields = self._format_canonical_fields(fields=normalized_fields)
        return (
            f"{request.method.upper()}\n"
            f"{canonical_path}\n"
            f"{canonical_query}\n"
            f"{canonical_fields}\n"
            f"{';'.join(normalized_fields)}\n"
            f"{self._compute_payload_hash(request=request)}"
        )

    def string_to_sign(
        self,
        *,
        canonical_request: str,
        signing_properties: SigV4SigningProperties,
    ) -> str:
        """The string to sign concatenates the formal identifier of the signing
        algorithm, the signing DateTime, the scope of the credentials, and a hash of the
        canonical request.

        The SigV4 specification defines the string to sign as:
            Algorithm \n
            RequestDateTime \n
            CredentialScope  \n
            HashedCanonicalRequest
        """
        date = signing_properties.get("date")
        if date is None:
            raise MissingExpectedParameterError(
                "Cannot generate string_to_sign without a valid date "
                f"in your signing_properties. Current value: {date}"
            )
        return (
            "AWS4-HMAC-SHA256\n"
            f"{date}\n"
            f"{self._scope(signing_properties=signing_properties)}\n"
            f"{sha256(canonical_request.encode()).hexdigest()}"
        )

    def _scope(self, signing_properties: SigV4SigningProperties) -> str:
        assert "date" in signing_properties
        formatted_date = signing_properties["date"][0:8]
        region = signing_properties["region"]
        service = signing_properties["service"]
        # Scope format: <YYYYMMDD>/<AWS Region>/<AWS Service>/aws4_request
        return f"{formatted_date}/{region}/{service}/aws4_request"

    def _format_canonical_query(self, *, query: str | None) -> str:
        if query is None:
            return ""

        query_params = parse_qsl(qs=query, keep_blank_values=True)
        query_parts = (
            (quote(string=key, safe=""), quote(string=value, safe=""))
            for key, value in query_params
        )
        # key-value pairs must be in sorted order for their encoded forms.
        return "&".join(f"{key}={value}" for key, value in sorted(query_parts))

    def _normalize_signing_fields(self, *, request: HTTPRequest) -> dict[str, str]:
        normalized_fields = {
            field.name.lower(): field.as_string()
            for field in request.fields
            if field.name.lower() not in HEADERS_EXCLUDED_FROM_SIGNING
        }
        if "host" not in normalized_fields:
            normalized_fields["host"] = self._normalize_host_field(
                uri=request.destination
            )

        return dict(sorted(normalized_fields.items()))

    def _normalize_host_field(self, *, uri: URI) -> str:
        return host_header_value(uri)

    def _format_canonical_fields(self, *, fields: dict[str, str]) -> str:
        return "".join(
            f"{key}:{' '.join(value.split())}\n" for key, value in fields.items()
        )

    def _compute_payload_hash(self, *, request: HTTPRequest) -> str:
        if not request.body:
            return EMPTY_SHA256_HASH
        return sha256(request.body).hexdigest()


class SigV4QuerySigner:
    """Signs query requests with SigV4, placing the signature in ``Authorization``."""

    def __init__(
        self, *, region: str, service: str, signer: SigV4Signer | None = None
    ):
        self._region = region
        self._service = service
        self._signer = signer or SigV4Signer()

    def sign_query(
        self,
        *,
        request: QueryRequest,
        destination: URI,
        identity: AWSCredentialsIdentity,
        api_version: str,
        date: datetime.datetime | None = None,
    ) -> SignedEnvelope:
        _validate_identity(identity)
        timestamp = (date or datetime.datetime.now(datetime.UTC)).strftime(
            SIGV4_TIMESTAMP_FORMAT
        )
        parameters = request.with_parameters({"Version": api_version}).pairs()
        unsigned = SignedEnvelope(
            action=request.action,
            destination=destination,
            parameters=parameters,
            fields=form_fields(),
            signature="",
            timestamp=timestamp,
        )
        signed = self._signer.sign(
            signing_properties={
                "region": self._region,
                "service": self._service,
                "date": timestamp,
            },
            http_request=unsigned.to_http_request(),
            identity=identity,
        )
        authorization = signed.fields["Authorization"].as_string()
        return SignedEnvelope(
            action=request.action,
            destination=destination,
            parameters=parameters,
            fields=signed.fields,
            signature=authorization.rsplit("Signature=", 1)[-1],
            timestamp=timestamp,
        )


def normalize_path(
    path: str | None,
    *,
    remove_consecutive_slashes: bool = False,
    uri_encode: bool = True,
) -> str:
    """Produce the canonical form of a request path.

    The path is percent-decoded, dot segments are removed per
    :rfc:`3986#section-5.2.4`, and the result is re-encoded leaving only RFC 3986
    unreserved characters and ``/`` unescaped. An empty path becomes ``/`` and
    repeated slashes are kept as they are. Applying this function to its own
    output returns the output unchanged.

    :param path: The path to normalize.
    :param remove_consecutive_slashes: Whether runs of ``/`` collapse to one.
    :param uri_encode: When false the path is only stripped of dot segments, which
        is what pre-encoded object keys need.
    """
    if not path:
        return "/"
    if not uri_encode:
        return _remove_dot_segments(path, remove_consecutive_slashes=False) or "/"
    normalized = _remove_dot_segments(
        unquote(path), remove_consecutive_slashes=remove_consecutive_slashes
    )
    return quote(string=normalized or "/", safe="/~")


def _remove_dot_segments(path: str, remove_consecutive_slashes: bool = True) -> str:
    """Removes dot segments from a path per :rfc:`3986#section-5.2.4`.

    Optionally removes consecutive slashes, true by default.
    :param path: The path to modify.
    :param remove_consecutive_slashes: Whether to remove consecutive slashes.
    :returns: The path with dot segments removed.
    """
    output: list[str] = []
    for segment in path.split("/"):
        if segment == ".":
            continue
        elif segment != "..":
            output.append(segment)
        elif output:
            output.pop()
    if path.startswith("/") and (not output or output[0]):
        output.insert(0, "")
    if output and path.endswith(("/.", "/..")):
        output.append("")
    result = "/".join(output)
    if remove_consecutive_slashes:
        result = re.sub("/{2,}", "/", result)
    return result
