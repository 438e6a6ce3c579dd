#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from ..decoders import ItemList, RecordSchema, StreamingItemDecoder, TagSet, Text
from ..exceptions import ProviderError
from ..query import QueryRequest
from ._base import ResourceSupport, parse_size, parse_timestamp
from .models import Volume, VolumeState

_LOGGER = logging.getLogger(__name__)

REQUESTED_DEVICE_PREFIX = "unknown,requested:"

VOLUME_SCHEMA = RecordSchema(
    volume_id=Text("volumeId"),
    size=Text("size"),
    snapshot_id=Text("snapshotId"),
    zone=Text("availabilityZone"),
    created_at=Text("createTime"),
    status=Text("status"),
    attachments=ItemList(
        "attachmentSet",
        RecordSchema(instance_id=Text("instanceId"), device=Text("device")),
    ),
    tags=TagSet(),
)

_PENDING_STATUSES = frozenset(
    {"creating", "attaching", "attached", "detaching", "detached"}
)
_AVAILABLE_STATUSES = frozenset({"available", "in-use"})


def volume_state(status: str | None) -> VolumeState:
    if status in _PENDING_STATUSES:
        return VolumeState.PENDING
    if status in _AVAILABLE_STATUSES:
        return VolumeState.AVAILABLE
    return VolumeState.DELETED


def volume_from_record(
    record: Mapping[str, Any], region: str | None = None
) -> Volume | None:
    volume_id = record["volume_id"]
    if volume_id is None:
        return None
    instance_id = device_id = None
    for attachment in record["attachments"]:
        instance_id = attachment["instance_id"] or instance_id
        if attachment["device"] is not None:
            device_id = attachment["device"].removeprefix(REQUESTED_DEVICE_PREFIX)
    tags = record["tags"]
    return Volume(
        volume_id=volume_id,
        name=tags.get("Name") or volume_id,
        size_gb=parse_size(record["size"]),
        state=volume_state(record["status"]),
        zone=record["zone"],
        snapshot_id=record["snapshot_id"],
        created_at=parse_timestamp(record["created_at"]),
        instance_id=instance_id,
        device_id=device_id,
        region=region,
        tags=tags,
    )


class VolumeSupport(ResourceSupport):
    """Block storage volumes."""

    def _volume_decoder(self) -> StreamingItemDecoder[Volume]:
        return StreamingItemDecoder(
            "volumeSet",
            VOLUME_SCHEMA,
            factory=lambda record: volume_from_record(record, self.region),
        )

    async def create(
        self, size_gb: int, zone: str, *, snapshot_id: str | None = None
    ) -> str:
        """Create a volume, optionally from a snapshot, and return its id."""
        request = (
            QueryRequest.builder("CreateVolume")
            .set("SnapshotId", snapshot_id)
            .set("Size", size_gb)
            .set("AvailabilityZone", zone)
            .build()
        )
        document = await self.dispatcher.invoke(request)
        return self._required_text(document, "volumeId", "CreateVolume")

    async def attach(self, volume_id: str, instance_id: str, device: str) -> None:
        request = (
            QueryRequest.builder("AttachVolume")
            .set("VolumeId", volume_id)
            .set("InstanceId", instance_id)
            .set("Device", device)
            .build()
        )
        await self.dispatcher.invoke(request)

    async def detach(self, volume_id: str, *, force: bool = False) -> None:
        """Detach a volume from whatever instance holds it.

        ``force`` detaches even when the instance does not release the volume, at
        the risk of losing unflushed writes.
        """
        builder = QueryRequest.builder("DetachVolume").set("VolumeId", volume_id)
        if force:
            builder.set("Force", True)
        await self._invoke_expecting_return(builder.build(), "Detach of volume denied.")

    async def get_volume(self, volume_id: str) -> Volume | None:
        request = QueryRequest.builder("DescribeVolumes").set("VolumeId.1", volume_id)
        try:
            document = await self.dispatcher.invoke(request.build())
        except ProviderError as e:
            if e.code is not None and (
                e.code.startswith("InvalidVolume.NotFound")
                or e.code == "InvalidParameterValue"
            ):
                return None
            _LOGGER.error("Unable to describe volume %s: %s", volume_id, e.summary)
            raise
        for record in document.decode_items("volumeSet", VOLUME_SCHEMA):
            volume = volume_from_record(record, self.region)
            if volume is not None and volume.volume_id == volume_id:
                return volume
        return None

    async def list_volumes(self) -> AsyncIterator[Volume]:
        request = QueryRequest.builder("DescribeVolumes").build()
        async for volume in self.dispatcher.stream(request, self._volume_decoder()):
            yield volume

    async def remove(self, volume_id: str) -> None:
        request = QueryRequest.builder("DeleteVolume").set("VolumeId", volume_id)
        await self._invoke_expecting_return(
            request.build(), "Deletion of volume denied."
        )
