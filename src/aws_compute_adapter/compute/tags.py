#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
import logging
from collections.abc import Mapping, Sequence

from ..exceptions import ProviderError
from ..query import QueryRequest, QueryRequestBuilder
from ._base import ResourceSupport

_LOGGER = logging.getLogger(__name__)

NOT_FOUND_RETRY_CODE = "InvalidInstanceID.NotFound"


def tag_filter_parameters(
    tags: Mapping[str, str] | None, start: int = 1
) -> dict[str, str]:
    """Build ``Filter.N.Name=tag:<key>`` / ``Filter.N.Value.1=<value>`` pairs.

    Numbering begins at ``start`` so the result can follow other filters.
    """
    parameters: dict[str, str] = {}
    for index, (key, value) in enumerate((tags or {}).items(), start=start):
        parameters[f"Filter.{index}.Name"] = f"tag:{key}"
        parameters[f"Filter.{index}.Value.1"] = value
    return parameters


def _resource_list(resource_ids: str | Sequence[str]) -> list[str]:
    if isinstance(resource_ids, str):
        return [resource_ids]
    return list(resource_ids)


class TagSupport(ResourceSupport):
    """Adds and removes key/value tags on any taggable resource.

    Tagging is best effort: failures are logged and reported through the return
    value instead of being raised, so a failed tag never undoes the operation that
    created the resource.
    """

    not_found_retry_delay: float = 5.0
    """Seconds to wait before retrying a tag on a resource not yet visible."""

    async def create_tags(
        self, resource_ids: str | Sequence[str], tags: Mapping[str, str | None]
    ) -> bool:
        """Apply ``tags`` to every resource in ``resource_ids``.

        Tags whose value is ``None`` are skipped. A freshly created resource may
        not be visible to the tagging API yet, so one retry follows a short pause.

        :returns: Whether the tags were applied.
        """
        resources = _resource_list(resource_ids)
        values = {key: value for key, value in tags.items() if value is not None}
        if not values:
            return True

        builder = QueryRequest.builder("CreateTags").add_list("ResourceId", resources)
        self._add_tags(builder, values)
        request = builder.build()
        try:
            await self.dispatcher.invoke(request)
        except ProviderError as e:
            if e.code != NOT_FOUND_RETRY_CODE:
                _LOGGER.error("Error setting tags for %s: %s", resources, e.summary)
                return False
            await asyncio.sleep(self.not_found_retry_delay)
            try:
                await self.dispatcher.invoke(request)
            except ProviderError as retry_error:
                _LOGGER.error(
                    "Error setting tags for %s: %s", resources, retry_error.summary
                )
                return False
        return True

    async def remove_tags(
        self, resource_ids: str | Sequence[str], tags: Mapping[str, str | None]
    ) -> bool:
        """Remove ``tags`` from the resources.

        A ``None`` value removes the key whatever its value.

        :returns: Whether the tags were removed.
        """
        resources = _resource_list(resource_ids)
        builder = QueryRequest.builder("DeleteTags").add_list("ResourceId", resources)
        self._add_tags(builder, tags)
        try:
            await self.dispatcher.invoke(builder.build())
        except ProviderError as e:
            _LOGGER.error("Error removing tags for %s: %s", resources, e.summary)
            return False
        return True

    def _add_tags(
        self, builder: QueryRequestBuilder, tags: Mapping[str, str | None]
    ) -> None:
        for index, (key, value) in enumerate(tags.items(), start=1):
            builder.set(f"Tag.{index}.Key", key)
            builder.set(f"Tag.{index}.Value", value)
