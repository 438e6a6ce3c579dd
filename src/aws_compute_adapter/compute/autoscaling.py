#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Scaling groups, launch configurations, and scaling policies.

The auto scaling API wraps collections in ``member`` elements rather than ``item``
and capitalizes its element names.
"""

import base64
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from typing import Any

from ..decoders import RecordSchema, StreamingItemDecoder, Text, TextList
from ..exceptions import ProviderError
from ..query import QueryRequest, QueryRequestBuilder
from ._base import ResourceSupport, parse_timestamp
from .models import LaunchConfiguration, ScalingGroup, ScalingPolicy

MEMBER = "member"

SCALING_GROUP_SCHEMA = RecordSchema(
    name=Text("AutoScalingGroupName"),
    arn=Text("AutoScalingGroupARN"),
    launch_configuration=Text("LaunchConfigurationName"),
    min_size=Text("MinSize", int),
    max_size=Text("MaxSize", int),
    desired_capacity=Text("DesiredCapacity", int),
    cooldown=Text("DefaultCooldown", int),
    zones=TextList("AvailabilityZones", MEMBER),
    load_balancers=TextList("LoadBalancerNames", MEMBER),
    instance_ids=TextList("Instances", MEMBER, "InstanceId"),
    suspended_processes=TextList("SuspendedProcesses", MEMBER, "ProcessName"),
    health_check_type=Text("HealthCheckType"),
    health_check_grace_period=Text("HealthCheckGracePeriod", int),
    vpc_zone_identifier=Text("VPCZoneIdentifier"),
    created_at=Text("CreatedTime"),
)

LAUNCH_CONFIGURATION_SCHEMA = RecordSchema(
    name=Text("LaunchConfigurationName"),
    arn=Text("LaunchConfigurationARN"),
    image_id=Text("ImageId"),
    instance_type=Text("InstanceType"),
    key_name=Text("KeyName"),
    security_groups=TextList("SecurityGroups", MEMBER),
    created_at=Text("CreatedTime"),
)

SCALING_POLICY_SCHEMA = RecordSchema(
    name=Text("PolicyName"),
    arn=Text("PolicyARN"),
    group_name=Text("AutoScalingGroupName"),
    adjustment_type=Text("AdjustmentType"),
    scaling_adjustment=Text("ScalingAdjustment", int),
    cooldown=Text("Cooldown", int),
    min_adjustment_step=Text("MinAdjustmentStep", int),
)


def scaling_group_from_record(record: Mapping[str, Any]) -> ScalingGroup | None:
    if record["name"] is None:
        return None
    subnets = (record["vpc_zone_identifier"] or "").split(",")
    return ScalingGroup(
        name=record["name"],
        arn=record["arn"],
        launch_configuration=record["launch_configuration"],
        min_size=record["min_size"] or 0,
        max_size=record["max_size"] or 0,
        desired_capacity=record["desired_capacity"] or 0,
        cooldown=record["cooldown"],
        zones=record["zones"],
        load_balancers=record["load_balancers"],
        instance_ids=record["instance_ids"],
        suspended_processes=record["suspended_processes"],
        health_check_type=record["health_check_type"],
        health_check_grace_period=record["health_check_grace_period"],
        subnet_ids=[s.strip() for s in subnets if s.strip()],
        created_at=parse_timestamp(record["created_at"]),
    )


def launch_configuration_from_record(
    record: Mapping[str, Any],
) -> LaunchConfiguration | None:
    if record["name"] is None:
        return None
    return LaunchConfiguration(
        name=record["name"],
        arn=record["arn"],
        image_id=record["image_id"],
        instance_type=record["instance_type"],
        key_name=record["key_name"],
        security_groups=record["security_groups"],
        created_at=parse_timestamp(record["created_at"]),
    )


def scaling_policy_from_record(record: Mapping[str, Any]) -> ScalingPolicy | None:
    if record["name"] is None:
        return None
    return ScalingPolicy(
        name=record["name"],
        arn=record["arn"],
        group_name=record["group_name"],
        adjustment_type=record["adjustment_type"],
        scaling_adjustment=record["scaling_adjustment"] or 0,
        cooldown=record["cooldown"],
        min_adjustment_step=record["min_adjustment_step"],
    )


class AutoScalingSupport(ResourceSupport):
    """Operations against the auto scaling query API."""

    async def create_scaling_group(
        self,
        name: str,
        launch_configuration: str,
        min_size: int,
        max_size: int,
        *,
        cooldown: int | None = None,
        desired_capacity: int | None = None,
        health_check_grace_period: int | None = None,
        health_check_type: str | None = None,
        subnet_ids: Sequence[str] = (),
        zones: Sequence[str] = (),
        load_balancers: Sequence[str] = (),
    ) -> str:
        """Create a scaling group and return its name."""
        builder = QueryRequest.builder("CreateAutoScalingGroup").set(
            "AutoScalingGroupName", name
        )
        self._set_group_parameters(
            builder,
            launch_configuration=launch_configuration,
            min_size=min_size,
            max_size=max_size,
            cooldown=cooldown,
            desired_capacity=desired_capacity,
            health_check_grace_period=health_check_grace_period,
            health_check_type=health_check_type,
            subnet_ids=subnet_ids,
            zones=zones,
        )
        builder.add_list(f"LoadBalancerNames.{MEMBER}", load_balancers)
        await self.dispatcher.invoke(builder.build())
        return name

    async def update_scaling_group(
        self,
        name: str,
        *,
        launch_configuration: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        cooldown: int | None = None,
        desired_capacity: int | None = None,
        health_check_grace_period: int | None = None,
        health_check_type: str | None = None,
        subnet_ids: Sequence[str] = (),
        zones: Sequence[str] = (),
    ) -> None:
        """Change the given settings of a scaling group, leaving the rest alone.

        :raises ValueError: If a size is negative.
        """
        for label, size in (("min_size", min_size), ("max_size", max_size)):
            if size is not None and size < 0:
                raise ValueError(f"{label} must not be negative, got {size}")
        builder = QueryRequest.builder("UpdateAutoScalingGroup").set(
            "AutoScalingGroupName", name
        )
        self._set_group_parameters(
            builder,
            launch_configuration=launch_configuration,
            min_size=min_size,
            max_size=max_size,
            cooldown=cooldown,
            desired_capacity=desired_capacity,
            health_check_grace_period=health_check_grace_period,
            health_check_type=health_check_type,
            subnet_ids=subnet_ids,
            zones=zones,
        )
        await self.dispatcher.invoke(builder.build())

    def _set_group_parameters(
        self,
        builder: QueryRequestBuilder,
        *,
        launch_configuration: str | None,
        min_size: int | None,
        max_size: int | None,
        cooldown: int | None,
        desired_capacity: int | None,
        health_check_grace_period: int | None,
        health_check_type: str | None,
        subnet_ids: Sequence[str],
        zones: Sequence[str],
    ) -> None:
        builder.set("LaunchConfigurationName", launch_configuration)
        builder.set("MinSize", min_size)
        builder.set("MaxSize", max_size)
        builder.set("DefaultCooldown", cooldown)
        builder.set("DesiredCapacity", desired_capacity)
        builder.set("HealthCheckGracePeriod", health_check_grace_period)
        builder.set("HealthCheckType", health_check_type)
        if subnet_ids:
            builder.set("VPCZoneIdentifier", ",".join(subnet_ids))
        builder.add_list(f"AvailabilityZones.{MEMBER}", zones)

    async def delete_scaling_group(self, name: str) -> None:
        request = QueryRequest.builder("DeleteAutoScalingGroup").set(
            "AutoScalingGroupName", name
        )
        await self.dispatcher.invoke(request.build())

    async def get_scaling_group(self, name: str) -> ScalingGroup | None:
        request = QueryRequest.builder("DescribeAutoScalingGroups").set(
            f"AutoScalingGroupNames.{MEMBER}.1", name
        )
        document = await self.dispatcher.invoke(request.build())
        for record in document.decode_items(
            "AutoScalingGroups", SCALING_GROUP_SCHEMA, MEMBER
        ):
            group = scaling_group_from_record(record)
            if group is not None and group.name == name:
                return group
        return None

    async def list_scaling_groups(self) -> AsyncIterator[ScalingGroup]:
        decoder = StreamingItemDecoder(
            "AutoScalingGroups",
            SCALING_GROUP_SCHEMA,
            factory=scaling_group_from_record,
            item_tag=MEMBER,
        )
        request = QueryRequest.builder("DescribeAutoScalingGroups").build()
        async for group in self.dispatcher.stream(request, decoder):
            yield group

    async def set_desired_capacity(self, name: str, capacity: int) -> None:
        request = (
            QueryRequest.builder("SetDesiredCapacity")
            .set("AutoScalingGroupName", name)
            .set("DesiredCapacity", capacity)
            .build()
        )
        await self.dispatcher.invoke(request)

    async def suspend(self, name: str, processes: Iterable[str] = ()) -> None:
        """Suspend scaling processes; all of them when ``processes`` is empty."""
        await self._scaling_processes("SuspendProcesses", name, processes)

    async def resume(self, name: str, processes: Iterable[str] = ()) -> None:
        """Resume scaling processes; all of them when ``processes`` is empty."""
        await self._scaling_processes("ResumeProcesses", name, processes)

    async def _scaling_processes(
        self, action: str, name: str, processes: Iterable[str]
    ) -> None:
        request = (
            QueryRequest.builder(action)
            .set("AutoScalingGroupName", name)
            .add_list(f"ScalingProcesses.{MEMBER}", processes)
            .build()
        )
        await self.dispatcher.invoke(request)

    async def create_launch_configuration(
        self,
        name: str,
        image_id: str,
        instance_type: str,
        *,
        key_name: str | None = None,
        user_data: str | None = None,
        security_groups: Sequence[str] = (),
    ) -> str:
        """Create a launch configuration and return its name.

        ``user_data`` is sent base64 encoded.
        """
        builder = (
            QueryRequest.builder("CreateLaunchConfiguration")
            .set("LaunchConfigurationName", name)
            .set("ImageId", image_id)
            .set("KeyName", key_name)
            .set("InstanceType", instance_type)
            .add_list(f"SecurityGroups.{MEMBER}", security_groups)
        )
        if user_data is not None:
            builder.set("UserData", base64.b64encode(user_data.encode()).decode())
        await self.dispatcher.invoke(builder.build())
        return name

    async def delete_launch_configuration(self, name: str) -> None:
        request = QueryRequest.builder("DeleteLaunchConfiguration").set(
            "LaunchConfigurationName", name
        )
        await self.dispatcher.invoke(request.build())

    async def get_launch_configuration(self, name: str) -> LaunchConfiguration | None:
        request = QueryRequest.builder("DescribeLaunchConfigurations").set(
            f"LaunchConfigurationNames.{MEMBER}.1", name
        )
        document = await self.dispatcher.invoke(request.build())
        for record in document.decode_items(
            "LaunchConfigurations", LAUNCH_CONFIGURATION_SCHEMA, MEMBER
        ):
            configuration = launch_configuration_from_record(record)
            if configuration is not None and configuration.name == name:
                return configuration
        return None

    async def list_launch_configurations(self) -> AsyncIterator[LaunchConfiguration]:
        decoder = StreamingItemDecoder(
            "LaunchConfigurations",
            LAUNCH_CONFIGURATION_SCHEMA,
            factory=launch_configuration_from_record,
            item_tag=MEMBER,
        )
        request = QueryRequest.builder("DescribeLaunchConfigurations").build()
        async for configuration in self.dispatcher.stream(request, decoder):
            yield configuration

    async def put_scaling_policy(
        self,
        group_name: str,
        policy_name: str,
        adjustment_type: str,
        scaling_adjustment: int,
        *,
        cooldown: int | None = None,
        min_adjustment_step: int | None = None,
    ) -> str:
        """Create or replace a scaling policy and return its ARN."""
        request = (
            QueryRequest.builder("PutScalingPolicy")
            .set("PolicyName", policy_name)
            .set("AdjustmentType", adjustment_type)
            .set("AutoScalingGroupName", group_name)
            .set("Cooldown", cooldown)
            .set("MinAdjustmentStep", min_adjustment_step)
            .set("ScalingAdjustment", scaling_adjustment)
            .build()
        )
        document = await self.dispatcher.invoke(request)
        arn = document.first_text("PolicyARN")
        if arn is None:
            raise ProviderError(
                "Successful POST, but no Policy information was provided"
            )
        return arn

    async def delete_scaling_policy(
        self, policy_name: str, group_name: str | None = None
    ) -> None:
        request = (
            QueryRequest.builder("DeletePolicy")
            .set("PolicyName", policy_name)
            .set("AutoScalingGroupName", group_name)
            .build()
        )
        await self.dispatcher.invoke(request)

    async def list_scaling_policies(
        self, group_name: str | None = None
    ) -> list[ScalingPolicy]:
        request = QueryRequest.builder("DescribePolicies").set(
            "AutoScalingGroupName", group_name
        )
        return await self._describe_policies(request.build())

    async def get_scaling_policy(self, policy_name: str) -> ScalingPolicy | None:
        request = QueryRequest.builder("DescribePolicies").set(
            f"PolicyNames.{MEMBER}.1", policy_name
        )
        for policy in await self._describe_policies(request.build()):
            if policy.name == policy_name:
                return policy
        return None

    async def _describe_policies(self, request: QueryRequest) -> list[ScalingPolicy]:
        document = await self.dispatcher.invoke(request)
        policies = []
        for record in document.decode_items(
            "ScalingPolicies", SCALING_POLICY_SCHEMA, MEMBER
        ):
            policy = scaling_policy_from_record(record)
            if policy is not None:
                policies.append(policy)
        return policies
