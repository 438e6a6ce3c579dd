#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from datetime import UTC, datetime

from ..aio.dispatch import QueryDispatcher
from ..aio.polling import ConvergencePoller
from ..decoders import XmlDocument
from ..exceptions import MissingCredentialsError, ProviderError
from ..query import QueryRequest

TIMESTAMP_FORMATS = ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a provider timestamp such as ``2012-07-20T10:15:30.000Z``.

    :raises ValueError: If the value is present but in no known format.
    """
    if value is None:
        return None
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized timestamp: {value!r}")


def parse_size(value: str | None) -> int:
    """Parse a size in gigabytes; missing values and ``n/a`` count as zero."""
    if value is None or value == "n/a":
        return 0
    return int(value)


def parse_percent(value: str | None) -> float:
    """Parse progress text like ``60%``. Anything unparseable counts as zero."""
    if not value:
        return 0.0
    try:
        return float(value.removesuffix("%") or 0)
    except ValueError:
        return 0.0


class ResourceSupport:
    """Shared plumbing for the services that map one kind of resource."""

    def __init__(
        self,
        dispatcher: QueryDispatcher,
        *,
        region: str | None = None,
        poller: ConvergencePoller | None = None,
    ):
        self.dispatcher = dispatcher
        self.region = region
        self.poller = poller or ConvergencePoller()

    @property
    def account_id(self) -> str | None:
        return getattr(self.dispatcher.identity, "account_id", None)

    def _require_account(self) -> str:
        account_id = self.account_id
        if not account_id:
            raise MissingCredentialsError(
                "An account id is required to list resources owned by the caller."
            )
        return account_id

    async def _invoke_expecting_return(
        self, request: QueryRequest, failure: str
    ) -> XmlDocument:
        """Invoke ``request`` and require ``<return>true</return>`` in the reply."""
        document = await self.dispatcher.invoke(request)
        if not document.return_value():
            raise ProviderError(failure)
        return document

    def _required_text(self, document: XmlDocument, tag: str, action: str) -> str:
        value = document.first_text(tag)
        if value is None:
            raise ProviderError(
                f"Successful {action} response did not include a {tag}."
            )
        return value
