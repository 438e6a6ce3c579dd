#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import Any

from ..aio.dispatch import QueryDispatcher
from ..aio.polling import PERMISSION_POLL, ConvergencePoller, PollCadence
from ..decoders import RecordSchema, StreamingItemDecoder, TagSet, Text
from ..exceptions import ProviderError
from ..query import QueryRequest
from ._base import ResourceSupport, parse_size, parse_timestamp
from .models import Snapshot, SnapshotState
from .tags import TagSupport, tag_filter_parameters

_LOGGER = logging.getLogger(__name__)

CREATE_VOLUME_PERMISSION = "createVolumePermission"
PUBLIC_GROUP = "all"

SNAPSHOT_SCHEMA = RecordSchema(
    snapshot_id=Text("snapshotId"),
    volume_id=Text("volumeId"),
    status=Text("status"),
    started_at=Text("startTime"),
    progress=Text("progress"),
    owner_id=Text("ownerId"),
    size=Text("volumeSize"),
    description=Text("description"),
    tags=TagSet(),
)

PERMISSION_SCHEMA = RecordSchema(user_id=Text("userId"), group=Text("group"))


def snapshot_state(status: str | None) -> SnapshotState:
    if status == "completed":
        return SnapshotState.AVAILABLE
    if status in ("deleting", "deleted"):
        return SnapshotState.DELETED
    return SnapshotState.PENDING


def snapshot_from_record(
    record: Mapping[str, Any], region: str | None = None
) -> Snapshot | None:
    snapshot_id = record["snapshot_id"]
    if snapshot_id is None:
        return None
    tags = record["tags"]
    size_gb = parse_size(record["size"])
    name = tags.get("Name") or snapshot_id
    description = (
        record["description"] or tags.get("Description") or f"{name} [{size_gb} GB]"
    )
    return Snapshot(
        snapshot_id=snapshot_id,
        name=name,
        description=description,
        state=snapshot_state(record["status"]),
        volume_id=record["volume_id"],
        size_gb=size_gb,
        progress=record["progress"] or "100%",
        owner_id=record["owner_id"],
        created_at=parse_timestamp(record["started_at"]),
        region=region,
        tags=tags,
    )


class SnapshotSupport(ResourceSupport):
    """Point-in-time copies of block storage volumes."""

    share_cadence: PollCadence = PERMISSION_POLL

    def __init__(
        self,
        dispatcher: QueryDispatcher,
        *,
        region: str | None = None,
        poller: ConvergencePoller | None = None,
        tags: TagSupport | None = None,
    ):
        super().__init__(dispatcher, region=region, poller=poller)
        self.tags = tags or TagSupport(dispatcher, region=region, poller=self.poller)

    def _snapshot_decoder(self) -> StreamingItemDecoder[Snapshot]:
        return StreamingItemDecoder(
            "snapshotSet",
            SNAPSHOT_SCHEMA,
            factory=lambda record: snapshot_from_record(record, self.region),
        )

    async def create(
        self,
        *,
        name: str,
        description: str,
        volume_id: str | None = None,
        source_snapshot_id: str | None = None,
        source_region: str | None = None,
        tags: Mapping[str, str | None] | None = None,
    ) -> str:
        """Snapshot a volume, or copy an existing snapshot from another region.

        ``name`` and ``description`` are also recorded as the ``Name`` and
        ``Description`` tags.

        :returns: The id of the new snapshot.
        """
        if volume_id is not None:
            builder = QueryRequest.builder("CreateSnapshot").set("VolumeId", volume_id)
        elif source_snapshot_id is not None:
            builder = (
                QueryRequest.builder("CopySnapshot")
                .set("SourceSnapshotId", source_snapshot_id)
                .set("SourceRegion", source_region or self.region)
            )
        else:
            raise ValueError("Either volume_id or source_snapshot_id is required.")
        request = builder.set("Description", description).build()

        document = await self.dispatcher.invoke(request)
        snapshot_id = self._required_text(document, "snapshotId", request.action)
        await self.tags.create_tags(
            snapshot_id, {**(tags or {}), "Name": name, "Description": description}
        )
        return snapshot_id

    async def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        request = QueryRequest.builder("DescribeSnapshots").set(
            "SnapshotId.1", snapshot_id
        )
        try:
            document = await self.dispatcher.invoke(request.build())
        except ProviderError as e:
            if e.code is not None and (
                e.code.startswith("InvalidSnapshot.NotFound")
                or e.code == "InvalidParameterValue"
            ):
                return None
            _LOGGER.error("Unable to describe snapshot %s: %s", snapshot_id, e.summary)
            raise
        for record in document.decode_items("snapshotSet", SNAPSHOT_SCHEMA):
            snapshot = snapshot_from_record(record, self.region)
            if snapshot is not None and snapshot.snapshot_id == snapshot_id:
                return snapshot
        return None

    async def list_snapshots(
        self, *, tags: Mapping[str, str] | None = None
    ) -> AsyncIterator[Snapshot]:
        """Yield the snapshots owned by the caller, optionally matching ``tags``."""
        request = (
            QueryRequest.builder("DescribeSnapshots")
            .set("Owner.1", "self")
            .set_all(tag_filter_parameters(tags))
            .build()
        )
        async for snapshot in self.dispatcher.stream(request, self._snapshot_decoder()):
            yield snapshot

    async def search_snapshots(
        self,
        *,
        owner_id: str | None = None,
        keyword: str | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> list[Snapshot]:
        """Find snapshots visible to the caller.

        ``owner_id`` may be an account id or ``self``. ``keyword`` must appear in
        the name or description.
        """
        builder = QueryRequest.builder("DescribeSnapshots")
        if owner_id is not None:
            builder.set("Owner.1", owner_id)
        builder.set_all(tag_filter_parameters(tags))
        return [
            snapshot
            async for snapshot in self.dispatcher.stream(
                builder.build(), self._snapshot_decoder()
            )
            if not keyword
            or keyword in snapshot.name
            or keyword in snapshot.description
        ]

    async def remove(self, snapshot_id: str) -> None:
        """Delete a snapshot. Deleting a snapshot that is already gone succeeds."""
        request = QueryRequest.builder("DeleteSnapshot").set("SnapshotId", snapshot_id)
        try:
            await self._invoke_expecting_return(
                request.build(), "Deletion of snapshot denied."
            )
        except ProviderError as e:
            if e.code == "InvalidSnapshot.NotFound":
                return
            raise

    async def _permissions(self, snapshot_id: str) -> list[dict[str, Any]]:
        request = (
            QueryRequest.builder("DescribeSnapshotAttribute")
            .set("SnapshotId", snapshot_id)
            .set("Attribute", CREATE_VOLUME_PERMISSION)
            .build()
        )
        try:
            document = await self.dispatcher.invoke(request)
        except ProviderError as e:
            if e.code is not None and (
                e.code.startswith("InvalidSnapshotID")
                or e.code.startswith("InvalidSnapshot.NotFound")
            ):
                return []
            raise
        return document.decode_items(CREATE_VOLUME_PERMISSION, PERMISSION_SCHEMA)

    async def is_public(self, snapshot_id: str) -> bool:
        permissions = await self._permissions(snapshot_id)
        return any(p["group"] == PUBLIC_GROUP for p in permissions)

    async def list_shares(self, snapshot_id: str) -> list[str]:
        """Account ids the snapshot is explicitly shared with."""
        permissions = await self._permissions(snapshot_id)
        return [p["user_id"] for p in permissions if p["user_id"] is not None]

    async def add_share(
        self,
        snapshot_id: str,
        *account_ids: str,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Allow ``account_ids`` to create volumes from the snapshot."""
        if await self._modify_permission(snapshot_id, "add", account_ids=account_ids):
            await self._await_share(
                snapshot_id,
                lambda shares, public: shares.issuperset(account_ids),
                f"snapshot {snapshot_id} to be shared with {', '.join(account_ids)}",
                cancel_event,
            )

    async def remove_share(
        self,
        snapshot_id: str,
        *account_ids: str,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        if await self._modify_permission(
            snapshot_id, "remove", account_ids=account_ids
        ):
            await self._await_share(
                snapshot_id,
                lambda shares, public: shares.isdisjoint(account_ids),
                f"snapshot {snapshot_id} to stop being shared with "
                f"{', '.join(account_ids)}",
                cancel_event,
            )

    async def add_public_share(
        self, snapshot_id: str, *, cancel_event: asyncio.Event | None = None
    ) -> None:
        if await self._modify_permission(snapshot_id, "add", public=True):
            await self._await_share(
                snapshot_id,
                lambda shares, public: public,
                f"snapshot {snapshot_id} to become public",
                cancel_event,
            )

    async def remove_public_share(
        self, snapshot_id: str, *, cancel_event: asyncio.Event | None = None
    ) -> None:
        if await self._modify_permission(snapshot_id, "remove", public=True):
            await self._await_share(
                snapshot_id,
                lambda shares, public: not public,
                f"snapshot {snapshot_id} to become private",
                cancel_event,
            )

    async def _modify_permission(
        self,
        snapshot_id: str,
        operation: str,
        *,
        account_ids: Sequence[str] = (),
        public: bool = False,
    ) -> bool:
        """Send the change; ``False`` if the snapshot no longer exists."""
        builder = QueryRequest.builder("ModifySnapshotAttribute").set(
            "SnapshotId", snapshot_id
        )
        if public:
            builder.set("UserGroup.1", PUBLIC_GROUP)
        builder.add_list("UserId", account_ids)
        builder.set("Attribute", CREATE_VOLUME_PERMISSION)
        builder.set("OperationType", operation)
        try:
            await self._invoke_expecting_return(
                builder.build(), f"Share of snapshot {snapshot_id} denied."
            )
        except ProviderError as e:
            if e.code is not None and e.code.startswith("InvalidSnapshot.NotFound"):
                _LOGGER.debug(
                    "Snapshot %s vanished before its share changed", snapshot_id
                )
                return False
            raise
        return True

    async def _await_share(
        self,
        snapshot_id: str,
        reflected: Callable[[set[str], bool], bool],
        goal: str,
        cancel_event: asyncio.Event | None,
    ) -> None:
        async def check() -> bool:
            permissions = await self._permissions(snapshot_id)
            shares = {p["user_id"] for p in permissions if p["user_id"]}
            public = any(p["group"] == PUBLIC_GROUP for p in permissions)
            return reflected(shares, public)

        await self.poller.wait_for_permission(
            check, goal=goal, cadence=self.share_cadence, cancel_event=cancel_event
        )
