#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Compute resources exposed through the EC2 and Auto Scaling query APIs."""

from .autoscaling import AutoScalingSupport
from .images import ImageSupport
from .instances import InstanceSupport
from .models import (
    Architecture,
    ImageClass,
    ImageState,
    ImageType,
    LaunchConfiguration,
    MachineImage,
    Platform,
    ScalingGroup,
    ScalingPolicy,
    Snapshot,
    SnapshotState,
    VirtualMachine,
    VmState,
    Volume,
    VolumeState,
)
from .services import ComputeServices
from .snapshots import SnapshotSupport
from .tags import TagSupport
from .volumes import VolumeSupport

__all__ = (
    "Architecture",
    "AutoScalingSupport",
    "ComputeServices",
    "ImageClass",
    "ImageState",
    "ImageSupport",
    "ImageType",
    "InstanceSupport",
    "LaunchConfiguration",
    "MachineImage",
    "Platform",
    "ScalingGroup",
    "ScalingPolicy",
    "Snapshot",
    "SnapshotState",
    "SnapshotSupport",
    "TagSupport",
    "VirtualMachine",
    "VmState",
    "Volume",
    "VolumeState",
    "VolumeSupport",
)
