#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Immutable query-protocol requests and the envelopes produced by signing them.

A :py:class:`QueryRequest` is assembled once through a
:py:class:`QueryRequestBuilder` and never changes afterwards, so a retried dispatch
always re-signs exactly the parameters of the first attempt.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from urllib.parse import quote

from ._http import URI, Field, Fields, HTTPRequest

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"

type ParameterValue = str | int | float | bool | None


def aws_percent_encode(value: str, *, path: bool = False) -> str:
    """Percent-encode a value the way query signatures expect.

    Only ``A-Za-z0-9-._~`` are left unescaped. Spaces become ``%20`` and ``*`` becomes
    ``%2A``. When ``path`` is set, ``/`` is also left as is.
    """
    return quote(value, safe="/" if path else "")


def encode_form(parameters: Iterable[tuple[str, str]]) -> str:
    """Join ``name``, ``value`` pairs into an ``application/x-www-form-urlencoded``
    body, preserving their order."""
    return "&".join(
        f"{aws_percent_encode(name)}={aws_percent_encode(value)}"
        for name, value in parameters
    )


def _stringify(value: ParameterValue) -> str:
    match value:
        case bool():
            return "true" if value else "false"
        case str():
            return value
        case _:
            return str(value)


@dataclass(frozen=True)
class QueryRequest:
    """A single query API call: an action plus its ordered string parameters."""

    action: str
    """The API action, sent as the ``Action`` parameter."""

    parameters: tuple[tuple[str, str], ...] = ()
    """The remaining parameters, in insertion order."""

    @staticmethod
    def builder(action: str) -> "QueryRequestBuilder":
        return QueryRequestBuilder(action)

    def pairs(self) -> tuple[tuple[str, str], ...]:
        """All parameters, ``Action`` first."""
        return (("Action", self.action), *self.parameters)

    def get(self, name: str) -> str | None:
        for key, value in self.parameters:
            if key == name:
                return value
        return None

    def with_parameters(
        self, parameters: Mapping[str, ParameterValue] | Iterable[tuple[str, str]]
    ) -> "QueryRequest":
        """Return a copy with ``parameters`` applied.

        Existing names are replaced in place, new names are appended. ``None`` values
        remove the name.
        """
        items = parameters.items() if isinstance(parameters, Mapping) else parameters
        updates = dict(items)
        merged: list[tuple[str, str]] = []
        for name, value in self.parameters:
            if name in updates:
                replacement = updates.pop(name)
                if replacement is not None:
                    merged.append((name, _stringify(replacement)))
            else:
                merged.append((name, value))
        merged.extend(
            (name, _stringify(value))
            for name, value in updates.items()
            if value is not None
        )
        return QueryRequest(self.action, tuple(merged))

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.pairs())


class QueryRequestBuilder:
    """Mutable accumulator for a :py:class:`QueryRequest`."""

    def __init__(self, action: str):
        self._action = action
        self._parameters: dict[str, str] = {}
        self._filter_count = 0

    def set(self, name: str, value: ParameterValue) -> "QueryRequestBuilder":
        """Set a parameter. ``None`` values are skipped."""
        if value is not None:
            self._parameters[name] = _stringify(value)
        return self

    def set_all(
        self, parameters: Mapping[str, ParameterValue]
    ) -> "QueryRequestBuilder":
        for name, value in parameters.items():
            self.set(name, value)
        return self

    def add_list(
        self, prefix: str, values: Iterable[ParameterValue], *, start: int = 1
    ) -> "QueryRequestBuilder":
        """Add ``prefix.N`` entries, numbering from ``start``.

        ``prefix`` may already carry a member marker, for example
        ``"AvailabilityZones.member"``.
        """
        for index, value in enumerate(values, start=start):
            self.set(f"{prefix}.{index}", value)
        return self

    def add_filter(self, name: str, *values: str) -> "QueryRequestBuilder":
        """Add the next ``Filter.N.Name`` / ``Filter.N.Value.M`` group."""
        self._filter_count += 1
        self.set(f"Filter.{self._filter_count}.Name", name)
        self.add_list(f"Filter.{self._filter_count}.Value", values)
        return self

    def build(self) -> QueryRequest:
        return QueryRequest(self._action, tuple(self._parameters.items()))


@dataclass(frozen=True, kw_only=True)
class SignedEnvelope:
    """A signed request ready for transmission.

    The parameters include any signature parameters added by the signer; the fields
    include any authorization header it added.
    """

    action: str
    destination: URI
    parameters: tuple[tuple[str, str], ...]
    fields: Fields = field(compare=False)
    signature: str
    timestamp: str

    @property
    def body(self) -> bytes:
        return encode_form(self.parameters).encode("utf-8")

    def to_http_request(self) -> HTTPRequest:
        fields = Fields(
            [Field(name=fld.name, values=list(fld.values)) for fld in self.fields]
        )
        return HTTPRequest(
            destination=self.destination,
            method="POST",
            fields=fields,
            body=self.body,
        )


def form_fields() -> Fields:
    """Header fields shared by every query dispatch."""
    return Fields([Field(name="Content-Type", values=[FORM_CONTENT_TYPE])])
