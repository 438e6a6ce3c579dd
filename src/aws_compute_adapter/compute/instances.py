#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import asyncio
import base64
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from ..aio.dispatch import QueryDispatcher
from ..aio.polling import STOP_POLL, ConvergencePoller, ConvergenceSpec, PollCadence
from ..decoders import ItemList, RecordSchema, StreamingItemDecoder, TagSet, Text
from ..exceptions import (
    OperationNotSupportedError,
    ProviderError,
    ResourceNotFoundError,
)
from ..query import QueryRequest
from ._base import ResourceSupport, parse_timestamp
from .models import Architecture, ImageType, Platform, VirtualMachine, VmState
from .tags import TagSupport

_LOGGER = logging.getLogger(__name__)

LAUNCH_POLL = PollCadence(interval=5, timeout=2 * 60)
INSUFFICIENT_CAPACITY_CODE = "InsufficientInstanceCapacity"
RESERVED_TAG_KEYS = frozenset(("name", "description"))

INSTANCE_SCHEMA = RecordSchema(
    instance_id=Text("instanceId"),
    image_id=Text("imageId"),
    state=Text("instanceState/name"),
    product_id=Text("instanceType"),
    zone=Text("placement/availabilityZone"),
    private_ip=Text("privateIpAddress"),
    public_ip=Text("ipAddress"),
    public_dns=Text("dnsName"),
    launched_at=Text("launchTime"),
    architecture=Text("architecture"),
    platform=Text("platform"),
    root_device_type=Text("rootDeviceType"),
    key_name=Text("keyName"),
    tags=TagSet(),
)

RESERVATION_SCHEMA = RecordSchema(instances=ItemList("instancesSet", INSTANCE_SCHEMA))

_VM_STATES = {
    "pending": VmState.PENDING,
    "running": VmState.RUNNING,
    "stopping": VmState.STOPPING,
    "shutting-down": VmState.STOPPING,
    "terminating": VmState.STOPPING,
    "stopped": VmState.STOPPED,
    "terminated": VmState.TERMINATED,
    "rebooting": VmState.REBOOTING,
}


def vm_state(state: str | None) -> VmState:
    try:
        return _VM_STATES[state or ""]
    except KeyError:
        _LOGGER.warning("Unknown instance state: %s", state)
        return VmState.PENDING


def vm_from_record(
    record: Mapping[str, Any], region: str | None = None
) -> VirtualMachine | None:
    instance_id = record["instance_id"]
    if instance_id is None:
        return None
    tags = record["tags"]
    if record["platform"]:
        platform = Platform.guess(record["platform"])
    else:
        platform = Platform.UNKNOWN
    if (record["root_device_type"] or "").lower() == "ebs":
        root_device_type = ImageType.VOLUME
    else:
        root_device_type = ImageType.STORAGE
    return VirtualMachine(
        instance_id=instance_id,
        name=tags.get("Name") or instance_id,
        state=vm_state(record["state"]),
        image_id=record["image_id"],
        product_id=record["product_id"],
        zone=record["zone"],
        private_ip=record["private_ip"],
        public_ip=record["public_ip"],
        public_dns=record["public_dns"],
        launched_at=parse_timestamp(record["launched_at"]),
        architecture=(
            Architecture.I32 if record["architecture"] == "i386" else Architecture.I64
        ),
        platform=platform,
        root_device_type=root_device_type,
        key_name=record["key_name"],
        region=region,
        tags=tags,
    )


class InstanceSupport(ResourceSupport):
    """Virtual machine lookup and power management."""

    stop_cadence: PollCadence = STOP_POLL
    launch_cadence: PollCadence = LAUNCH_POLL

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

    async def get_virtual_machine(self, instance_id: str) -> VirtualMachine | None:
        request = QueryRequest.builder("DescribeInstances").set(
            "InstanceId.1", instance_id
        )
        try:
            document = await self.dispatcher.invoke(request.build())
        except ProviderError as e:
            if e.code is not None and e.code.startswith("InvalidInstanceID"):
                return None
            _LOGGER.error("Unable to describe instance %s: %s", instance_id, e.summary)
            raise
        for reservation in document.decode_items("reservationSet", RESERVATION_SCHEMA):
            for record in reservation["instances"]:
                vm = vm_from_record(record, self.region)
                if vm is not None and vm.instance_id == instance_id:
                    return vm
        return None

    async def list_virtual_machines(self) -> AsyncIterator[VirtualMachine]:
        """Yield every instance, reservation by reservation."""
        decoder: StreamingItemDecoder[dict[str, Any]] = StreamingItemDecoder(
            "reservationSet", RESERVATION_SCHEMA
        )
        request = QueryRequest.builder("DescribeInstances").build()
        async for reservation in self.dispatcher.stream(request, decoder):
            for record in reservation["instances"]:
                vm = vm_from_record(record, self.region)
                if vm is not None:
                    yield vm

    async def launch(
        self,
        image_id: str,
        product_id: str,
        name: str,
        description: str | None = None,
        *,
        zone: str | None = None,
        key_name: str | None = None,
        security_group_ids: Sequence[str] = (),
        subnet_id: str | None = None,
        user_data: str | None = None,
        kernel_id: str | None = None,
        ramdisk_id: str | None = None,
        prevent_api_termination: bool = False,
        monitoring: bool | None = None,
        tags: Mapping[str, str | None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> VirtualMachine | None:
        """Launch one instance of ``image_id`` and wait until it can be looked up.

        The instance is tagged with ``Name`` and ``Description`` plus any extra
        ``tags``; extra tags named ``name`` or ``description`` are ignored.
        ``user_data`` is sent base64 encoded.

        :returns: The new instance, or ``None`` if the provider has no capacity
            for the requested product.
        """
        builder = (
            QueryRequest.builder("RunInstances")
            .set("ImageId", image_id)
            .set("MinCount", 1)
            .set("MaxCount", 1)
            .set("InstanceType", product_id)
            .set("KernelId", kernel_id)
            .set("RamdiskId", ramdisk_id)
            .set("Placement.AvailabilityZone", zone)
            .set("KeyName", key_name)
            .set("SubnetId", subnet_id)
            .set("Monitoring.Enabled", monitoring)
            .add_list("SecurityGroupId", security_group_ids)
        )
        if user_data is not None:
            builder.set("UserData", base64.b64encode(user_data.encode()).decode())
        if prevent_api_termination:
            builder.set("DisableApiTermination", True)

        try:
            document = await self.dispatcher.invoke(builder.build())
        except ProviderError as e:
            if e.code == INSUFFICIENT_CAPACITY_CODE:
                _LOGGER.warning("No capacity to launch %s: %s", product_id, e.summary)
                return None
            _LOGGER.error("Unable to launch %s: %s", image_id, e.summary)
            raise

        launched = None
        for record in document.decode_items("instancesSet", INSTANCE_SCHEMA):
            launched = vm_from_record(record, self.region)
            if launched is not None:
                break
        if launched is None:
            raise ProviderError("Unable to identify the launched instance.")
        instance_id = launched.instance_id

        instance_tags: dict[str, str | None] = {
            key: value
            for key, value in (tags or {}).items()
            if key.lower() not in RESERVED_TAG_KEYS
        }
        instance_tags.update(Name=name, Description=description)
        await self.tags.create_tags(instance_id, instance_tags)

        visible = await self.poller.wait_for_state(
            lambda: self.get_virtual_machine(instance_id),
            lambda vm: True,
            goal=f"instance {instance_id} to become visible",
            cadence=self.launch_cadence,
            cancel_event=cancel_event,
        )
        return visible or launched

    async def _require_persistent(self, instance_id: str) -> VirtualMachine:
        vm = await self.get_virtual_machine(instance_id)
        if vm is None:
            raise ResourceNotFoundError(f"No such instance: {instance_id}")
        if not vm.is_persistent:
            raise OperationNotSupportedError(
                "Instances backed by ephemeral drives are not start/stop capable"
            )
        return vm

    async def start(self, instance_id: str) -> None:
        """Start a stopped, volume-backed instance.

        :raises OperationNotSupportedError: If the instance is instance-store backed.
        """
        await self._require_persistent(instance_id)
        request = QueryRequest.builder("StartInstances").set(
            "InstanceId.1", instance_id
        )
        await self.dispatcher.invoke(request.build())

    async def stop(
        self,
        instance_id: str,
        *,
        force: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """Stop a volume-backed instance.

        Unless ``force`` is set, the instance is given time to shut down cleanly.
        If it has not stopped when that time runs out, it is stopped forcibly.

        :raises OperationNotSupportedError: If the instance is instance-store backed.
        """
        await self._require_persistent(instance_id)
        await self._send_stop(instance_id, force=force)
        if force:
            return

        async def stopped() -> bool:
            vm = await self.get_virtual_machine(instance_id)
            return vm is None or vm.state in (VmState.STOPPED, VmState.TERMINATED)

        converged = await self.poller.wait(
            ConvergenceSpec(
                predicate=stopped,
                retry_strategy=self.stop_cadence.retry_strategy(),
                goal=f"instance {instance_id} to stop",
            ),
            cancel_event,
        )
        if converged or (cancel_event is not None and cancel_event.is_set()):
            return
        _LOGGER.warning("Instance %s did not stop cleanly; forcing it", instance_id)
        await self._send_stop(instance_id, force=True)

    async def _send_stop(self, instance_id: str, *, force: bool) -> None:
        builder = QueryRequest.builder("StopInstances").set("InstanceId.1", instance_id)
        if force:
            builder.set("Force", True)
        await self.dispatcher.invoke(builder.build())

    async def reboot(self, instance_id: str) -> None:
        request = QueryRequest.builder("RebootInstances").set(
            "InstanceId.1", instance_id
        )
        await self.dispatcher.invoke(request.build())

    async def terminate(self, instance_id: str) -> None:
        request = QueryRequest.builder("TerminateInstances").set(
            "InstanceId.1", instance_id
        )
        await self.dispatcher.invoke(request.build())
