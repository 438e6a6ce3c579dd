#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Machine images: lookup, listing, capture, bundling, and sharing."""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from ..aio.dispatch import QueryDispatcher
from ..aio.polling import (
    PERMISSION_POLL,
    STATE_POLL,
    ConvergencePoller,
    NotConverged,
    PollCadence,
)
from ..aio.tasks import AsyncTask, run_tracked
from ..aio.utils import merge_unique
from ..decoders import (
    ItemList,
    RecordSchema,
    StreamingItemDecoder,
    TagSet,
    Text,
)
from ..exceptions import ProviderError, ResourceNotFoundError, RetryError
from ..query import QueryRequest
from ..signers import format_sigv2_timestamp, sign_upload_policy
from ._base import ResourceSupport, parse_percent
from .models import (
    Architecture,
    ImageClass,
    ImageState,
    ImageType,
    MachineImage,
    Platform,
)
from .tags import TagSupport

_LOGGER = logging.getLogger(__name__)

BUNDLE_POLL = PollCadence(interval=20, timeout=None)
BUNDLE_FAILURE_GRACE = 120.0
BUNDLE_FAILED_MESSAGE = "Bundle failed without further information."
UPLOAD_POLICY_LIFETIME = timedelta(hours=12)
MANIFEST_SUFFIX = ".manifest.xml"
PUBLIC_GROUP = "all"

BLOCK_DEVICE_SCHEMA = RecordSchema(
    device_name=Text("deviceName"),
    virtual_name=Text("virtualName"),
    snapshot_id=Text("ebs/snapshotId"),
    volume_size=Text("ebs/volumeSize"),
)

IMAGE_SCHEMA = RecordSchema(
    image_id=Text("imageId"),
    location=Text("imageLocation"),
    state=Text("imageState"),
    owner_id=Text("imageOwnerId"),
    is_public=Text("isPublic"),
    architecture=Text("architecture"),
    image_type=Text("imageType"),
    platform=Text("platform"),
    kernel_id=Text("kernelId"),
    ramdisk_id=Text("ramdiskId"),
    name=Text("name"),
    description=Text("description"),
    root_device_type=Text("rootDeviceType"),
    state_reason=Text("stateReason/message"),
    tags=TagSet(),
    block_devices=ItemList("blockDeviceMapping", BLOCK_DEVICE_SCHEMA),
)

BUNDLE_SCHEMA = RecordSchema(
    bundle_id=Text("bundleId"),
    state=Text("state"),
    progress=Text("progress"),
    message=Text("error/message"),
    code=Text("error/code"),
)

LAUNCH_PERMISSION_SCHEMA = RecordSchema(
    user_id=Text("userId"),
    group=Text("group"),
)

_IMAGE_STATES = {
    "available": ImageState.ACTIVE,
    "deregistered": ImageState.DELETED,
    "failed": ImageState.DELETED,
}


def _manifest_basename(location: str) -> str:
    name = location.rsplit("/", 1)[-1]
    index = name.find(MANIFEST_SUFFIX)
    return name[:index] if index > -1 else name


def image_from_record(
    record: Mapping[str, Any], region: str | None = None
) -> MachineImage | None:
    """Map a decoded ``imagesSet`` item onto a :py:class:`MachineImage`.

    Kernel and ramdisk images are not machine images and map to ``None``.
    """
    image_id = record["image_id"]
    if image_id is None or record["image_type"] not in (None, "machine"):
        return None

    architecture = (
        Architecture.I32 if record["architecture"] == "i386" else Architecture.I64
    )
    location = record["location"]
    if record["platform"]:
        platform = Platform.guess(record["platform"])
    else:
        platform = Platform.guess(location, record["name"])

    fallback = _manifest_basename(location) if location else image_id
    name = record["name"] or fallback
    description = record["description"] or (
        f"{fallback if location else name} "
        f"({architecture.value} {platform.value})"
    )

    if (record["root_device_type"] or "").lower() == "ebs":
        image_type = ImageType.VOLUME
    else:
        image_type = ImageType.STORAGE

    return MachineImage(
        image_id=image_id,
        name=name,
        description=description,
        state=_IMAGE_STATES.get((record["state"] or "").lower(), ImageState.PENDING),
        image_class=ImageClass.MACHINE,
        image_type=image_type,
        architecture=architecture,
        platform=platform,
        owner_id=record["owner_id"],
        location=location,
        kernel_image_id=record["kernel_id"],
        ramdisk_image_id=record["ramdisk_id"],
        is_public=(record["is_public"] or "").lower() == "true",
        region=region,
        tags=record["tags"],
        block_devices=record["block_devices"],
        state_reason=record["state_reason"],
    )


def _matches(
    image: MachineImage, keyword: str | None, platform: Platform | None
) -> bool:
    if platform is not None and platform is not Platform.UNKNOWN:
        if platform is Platform.UNIX:
            if not image.platform.is_unix:
                return False
        elif image.platform is not platform:
            return False
    if keyword:
        keyword = keyword.lower()
        return any(
            keyword in value.lower()
            for value in (image.description, image.name, image.image_id)
        )
    return True


class ImageSupport(ResourceSupport):
    """Machine image operations against the EC2 query API."""

    bundle_cadence: PollCadence = BUNDLE_POLL
    share_cadence: PollCadence = PERMISSION_POLL
    bundle_failure_grace: float = BUNDLE_FAILURE_GRACE
    """Seconds a failed bundle may report no reason before it is given up on."""

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
        self.bundle_clock: Callable[[], float] = time.monotonic

    def _image_decoder(self) -> StreamingItemDecoder[MachineImage]:
        return StreamingItemDecoder(
            "imagesSet",
            IMAGE_SCHEMA,
            factory=lambda record: image_from_record(record, self.region),
        )

    async def get_image(self, image_id: str) -> MachineImage | None:
        """Look up one image; ``None`` if the provider does not know it."""
        request = QueryRequest.builder("DescribeImages").set("ImageId.1", image_id)
        try:
            document = await self.dispatcher.invoke(request.build())
        except ProviderError as e:
            if e.code is not None and e.code.startswith("InvalidAMIID"):
                return None
            _LOGGER.error("Unable to describe image %s: %s", image_id, e.summary)
            raise
        for record in document.decode_items("imagesSet", IMAGE_SCHEMA):
            image = image_from_record(record, self.region)
            if image is not None and image.image_id == image_id:
                return image
        return None

    async def list_images(self) -> AsyncIterator[MachineImage]:
        """Yield the images owned by the account, then those it may launch.

        An image found by both queries is yielded once, from the first.
        """
        account_id = self._require_account()

        def owned() -> AsyncIterator[MachineImage]:
            request = QueryRequest.builder("DescribeImages").set("Owner.1", account_id)
            return self.dispatcher.stream(request.build(), self._image_decoder())

        def executable() -> AsyncIterator[MachineImage]:
            request = QueryRequest.builder("DescribeImages").set(
                "ExecutableBy.1", account_id
            )
            return self.dispatcher.stream(request.build(), self._image_decoder())

        async for image in merge_unique(
            (owned, executable), key=lambda image: image.image_id
        ):
            yield image

    async def search_public_images(
        self,
        *,
        keyword: str | None = None,
        platform: Platform | None = None,
        architecture: Architecture | None = None,
    ) -> list[MachineImage]:
        """Find available images anyone may launch.

        Architecture and Windows are filtered by the provider; other platforms and
        the keyword, matched against description, name, and id, are filtered here.
        """
        builder = QueryRequest.builder("DescribeImages").set(
            "ExecutableBy.1", PUBLIC_GROUP
        )
        if architecture is not None:
            builder.add_filter(
                "architecture", "i386" if architecture is Architecture.I32 else "x86_64"
            )
        if platform is not None and platform.is_windows:
            builder.add_filter("platform", "windows")
        builder.add_filter("state", "available")

        return [
            image
            async for image in self.dispatcher.stream(
                builder.build(), self._image_decoder()
            )
            if _matches(image, keyword, platform)
        ]

    async def capture_image(
        self,
        instance_id: str,
        name: str,
        description: str | None = None,
        *,
        tags: Mapping[str, str | None] | None = None,
        cadence: PollCadence = STATE_POLL,
        cancel_event: asyncio.Event | None = None,
    ) -> MachineImage:
        """Image a volume-backed instance and wait for the image to become usable.

        The provider requires unique names, so the current time in milliseconds is
        appended to ``name``.

        :raises ResourceNotFoundError: If the new image fails, disappears, or never
            becomes visible.
        """
        request = (
            QueryRequest.builder("CreateImage")
            .set("InstanceId", instance_id)
            .set("Name", f"{name}-{int(time.time() * 1000)}")
            .set("Description", description)
            .build()
        )
        document = await self.dispatcher.invoke(request)
        image_id = self._required_text(document, "imageId", "CreateImage")
        if tags:
            await self.tags.create_tags(image_id, tags)

        image = await self.poller.wait_for_state(
            lambda: self.get_image(image_id),
            lambda image: image.state is ImageState.ACTIVE,
            failed=lambda image: image.state is ImageState.DELETED,
            describe_failure=lambda image: image.state_reason,
            goal=f"image {image_id} to become available",
            cadence=cadence,
            cancel_event=cancel_event,
        )
        if image is None:
            image = await self.get_image(image_id)
        if image is None:
            raise ResourceNotFoundError(
                f"Image {image_id} created from {instance_id} never became visible."
            )
        return image

    async def bundle_instance(
        self, instance_id: str, bucket: str, prefix: str
    ) -> AsyncTask[str]:
        """Bundle an instance-store backed instance into object storage.

        The returned task tracks the bundle in the background, registers the
        resulting manifest once the bundle completes, and finishes with the new
        image id.
        """
        identity = self.dispatcher.identity
        expiration = datetime.now(UTC) + UPLOAD_POLICY_LIFETIME
        policy = json.dumps(
            {
                "expiration": format_sigv2_timestamp(expiration),
                "conditions": [
                    {"bucket": bucket},
                    {"acl": "ec2-bundle-read"},
                    ["starts-with", "$key", prefix],
                ],
            }
        )
        encoded_policy, policy_signature = sign_upload_policy(
            policy, identity.secret_access_key
        )
        request = (
            QueryRequest.builder("BundleInstance")
            .set("InstanceId", instance_id)
            .set("Storage.S3.Bucket", bucket)
            .set("Storage.S3.Prefix", prefix)
            .set("Storage.S3.AWSAccessKeyId", identity.access_key_id)
            .set("Storage.S3.UploadPolicy", encoded_policy)
            .set("Storage.S3.UploadPolicySignature", policy_signature)
            .build()
        )
        document = await self.dispatcher.invoke(request)
        bundle_id = document.first_text("bundleId")
        if bundle_id is None:
            raise ProviderError("Unable to identify the bundle task ID.")

        manifest = f"{bucket}/{prefix}{MANIFEST_SUFFIX}"
        task: AsyncTask[str] = AsyncTask(f"Bundle {instance_id} to {manifest}")
        run_tracked(task, self._track_bundle(task, bundle_id, manifest))
        return task

    async def _describe_bundle(self, bundle_id: str) -> dict[str, Any] | None:
        request = QueryRequest.builder("DescribeBundleTasks").set(
            "BundleId.1", bundle_id
        )
        document = await self.dispatcher.invoke(request.build())
        for record in document.decode_items("bundleInstanceTasksSet", BUNDLE_SCHEMA):
            if record["bundle_id"] == bundle_id:
                return record
        return None

    async def _track_bundle(
        self, task: AsyncTask[str], bundle_id: str, manifest: str
    ) -> str:
        strategy = self.bundle_cadence.retry_strategy()
        retry_token = strategy.acquire_initial_retry_token(token_scope=bundle_id)
        failed_since: float | None = None

        while True:
            if retry_token.retry_delay:
                await asyncio.sleep(retry_token.retry_delay)

            bundle = await self._describe_bundle(bundle_id)
            if bundle is not None:
                progress = parse_percent(bundle["progress"])
                if bundle["state"] != "failed":
                    failed_since = None
                match bundle["state"]:
                    case "complete":
                        task.set_percent_complete(99.0)
                        image_id = await self.register_image(manifest)
                        task.complete(image_id)
                        return image_id
                    case "failed":
                        message = bundle["message"]
                        if message is None:
                            now = self.bundle_clock()
                            if failed_since is None:
                                failed_since = now
                            if now - failed_since >= self.bundle_failure_grace:
                                message = BUNDLE_FAILED_MESSAGE
                        if message is not None:
                            raise ProviderError(message, code=bundle["code"])
                    case "bundling":
                        task.set_percent_complete(min(progress / 2, 50.0))
                    case "storing":
                        task.set_percent_complete(min(50.0 + progress / 2, 100.0))
                    case _:
                        task.set_percent_complete(0.0)
                task.status_message = bundle["state"]

            try:
                retry_token = strategy.refresh_retry_token_for_retry(
                    token_to_renew=retry_token, error=NotConverged(bundle_id)
                )
            except RetryError as e:
                raise ProviderError(
                    f"Gave up waiting for bundle {bundle_id} to complete."
                ) from e

    async def register_image(
        self,
        location: str,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> str:
        """Register a bundle manifest as an image and return its id."""
        request = (
            QueryRequest.builder("RegisterImage")
            .set("ImageLocation", location)
            .set("Name", name)
            .set("Description", description)
            .build()
        )
        document = await self.dispatcher.invoke(request)
        return self._required_text(document, "imageId", "RegisterImage")

    async def remove(self, image_id: str) -> None:
        """Deregister an image."""
        request = QueryRequest.builder("DeregisterImage").set("ImageId", image_id)
        await self._invoke_expecting_return(
            request.build(), f"Deregistration of image {image_id} denied."
        )

    async def _launch_permissions(self, image_id: str) -> list[dict[str, Any]] | None:
        request = (
            QueryRequest.builder("DescribeImageAttribute")
            .set("ImageId", image_id)
            .set("Attribute", "launchPermission")
            .build()
        )
        try:
            document = await self.dispatcher.invoke(request)
        except ProviderError as e:
            if e.code is not None and e.code.startswith("InvalidImageID"):
                return None
            raise
        return document.decode_items("launchPermission", LAUNCH_PERMISSION_SCHEMA)

    async def list_shares(self, image_id: str) -> list[str]:
        """Account ids the image is explicitly shared with."""
        permissions = await self._launch_permissions(image_id) or []
        return [p["user_id"] for p in permissions if p["user_id"] is not None]

    async def is_image_shared_with_public(self, image_id: str) -> bool:
        permissions = await self._launch_permissions(image_id) or []
        return any(p["group"] == PUBLIC_GROUP for p in permissions)

    async def add_image_share(
        self,
        image_id: str,
        account_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Allow ``account_id`` to launch the image."""
        if await self._modify_launch_permission(
            image_id, "Add", "UserId", account_id
        ):
            await self._await_share(
                image_id,
                lambda shares, public: account_id in shares,
                f"image {image_id} to be shared with {account_id}",
                cancel_event,
            )

    async def remove_image_share(
        self,
        image_id: str,
        account_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        if await self._modify_launch_permission(
            image_id, "Remove", "UserId", account_id
        ):
            await self._await_share(
                image_id,
                lambda shares, public: account_id not in shares,
                f"image {image_id} to stop being shared with {account_id}",
                cancel_event,
            )

    async def add_public_share(
        self, image_id: str, *, cancel_event: asyncio.Event | None = None
    ) -> None:
        if await self._modify_launch_permission(image_id, "Add", "Group", PUBLIC_GROUP):
            await self._await_share(
                image_id,
                lambda shares, public: public,
                f"image {image_id} to become public",
                cancel_event,
            )

    async def remove_public_share(
        self, image_id: str, *, cancel_event: asyncio.Event | None = None
    ) -> None:
        if await self._modify_launch_permission(
            image_id, "Remove", "Group", PUBLIC_GROUP
        ):
            await self._await_share(
                image_id,
                lambda shares, public: not public,
                f"image {image_id} to become private",
                cancel_event,
            )

    async def _modify_launch_permission(
        self, image_id: str, operation: str, kind: str, value: str
    ) -> bool:
        """Send the change; ``False`` if the image no longer exists."""
        request = (
            QueryRequest.builder("ModifyImageAttribute")
            .set("ImageId", image_id)
            .set(f"LaunchPermission.{operation}.1.{kind}", value)
            .build()
        )
        try:
            await self._invoke_expecting_return(
                request, "Share of image failed without explanation."
            )
        except ProviderError as e:
            if e.code is not None and e.code.startswith("InvalidImageID"):
                _LOGGER.debug("Image %s vanished before its share changed", image_id)
                return False
            raise
        return True

    async def _await_share(
        self,
        image_id: str,
        reflected: Callable[[set[str], bool], bool],
        goal: str,
        cancel_event: asyncio.Event | None,
    ) -> None:
        async def check() -> bool:
            permissions = await self._launch_permissions(image_id) or []
            shares = {p["user_id"] for p in permissions if p["user_id"]}
            public = any(p["group"] == PUBLIC_GROUP for p in permissions)
            return reflected(shares, public)

        await self.poller.wait_for_permission(
            check, goal=goal, cadence=self.share_cadence, cancel_event=cancel_event
        )
