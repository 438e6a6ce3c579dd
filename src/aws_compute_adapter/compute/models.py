#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Provider-neutral compute resources."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ImageClass(Enum):
    MACHINE = "machine"
    KERNEL = "kernel"
    RAMDISK = "ramdisk"


class ImageState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DELETED = "deleted"


class ImageType(Enum):
    """Where the root device of an image lives."""

    VOLUME = "volume"
    """A block storage volume."""

    STORAGE = "storage"
    """Instance store backed by an object storage bundle."""


class Architecture(Enum):
    I32 = "i32"
    I64 = "i64"


class Platform(Enum):
    UNIX = "unix"
    LINUX = "linux"
    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    CENT_OS = "centos"
    RHEL = "rhel"
    FEDORA = "fedora"
    SUSE = "suse"
    SOLARIS = "solaris"
    FREE_BSD = "freebsd"
    WINDOWS = "windows"
    UNKNOWN = "unknown"

    @property
    def is_windows(self) -> bool:
        return self is Platform.WINDOWS

    @property
    def is_unix(self) -> bool:
        return self not in (Platform.WINDOWS, Platform.UNKNOWN)

    @classmethod
    def guess(cls, *hints: str | None) -> "Platform":
        """Guess a platform from free text such as an image name or manifest path.

        Hints are tried in order; the first one that identifies a platform wins.
        """
        for hint in hints:
            if not hint:
                continue
            text = hint.lower()
            for keywords, platform in _PLATFORM_KEYWORDS:
                if any(keyword in text for keyword in keywords):
                    return platform
        return cls.UNKNOWN


_PLATFORM_KEYWORDS: tuple[tuple[tuple[str, ...], Platform], ...] = (
    (("windows", "win2k", "win2003", "win2008", "win2012"), Platform.WINDOWS),
    (("ubuntu",), Platform.UBUNTU),
    (("debian",), Platform.DEBIAN),
    (("centos",), Platform.CENT_OS),
    (("rhel", "red hat", "redhat"), Platform.RHEL),
    (("fedora",), Platform.FEDORA),
    (("suse", "sles"), Platform.SUSE),
    (("solaris",), Platform.SOLARIS),
    (("freebsd",), Platform.FREE_BSD),
    (("linux", "amzn", "amazon"), Platform.LINUX),
    (("unix",), Platform.UNIX),
)


class VolumeState(Enum):
    PENDING = "pending"
    AVAILABLE = "available"
    DELETED = "deleted"


class SnapshotState(Enum):
    PENDING = "pending"
    AVAILABLE = "available"
    DELETED = "deleted"


class VmState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"
    REBOOTING = "rebooting"


@dataclass(kw_only=True)
class MachineImage:
    image_id: str
    name: str
    description: str
    state: ImageState
    image_class: ImageClass = ImageClass.MACHINE
    image_type: ImageType = ImageType.STORAGE
    architecture: Architecture = Architecture.I64
    platform: Platform = Platform.UNKNOWN
    owner_id: str | None = None
    location: str | None = None
    kernel_image_id: str | None = None
    ramdisk_image_id: str | None = None
    is_public: bool = False
    region: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    block_devices: list[dict[str, str | None]] = field(default_factory=list)
    state_reason: str | None = None


@dataclass(kw_only=True)
class Volume:
    volume_id: str
    name: str
    size_gb: int
    state: VolumeState
    zone: str | None = None
    snapshot_id: str | None = None
    created_at: datetime | None = None
    instance_id: str | None = None
    device_id: str | None = None
    region: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(kw_only=True)
class Snapshot:
    snapshot_id: str
    name: str
    description: str
    state: SnapshotState
    volume_id: str | None = None
    size_gb: int = 0
    progress: str = "100%"
    owner_id: str | None = None
    created_at: datetime | None = None
    region: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(kw_only=True)
class VirtualMachine:
    instance_id: str
    name: str
    state: VmState
    image_id: str | None = None
    product_id: str | None = None
    zone: str | None = None
    private_ip: str | None = None
    public_ip: str | None = None
    public_dns: str | None = None
    launched_at: datetime | None = None
    architecture: Architecture = Architecture.I64
    platform: Platform = Platform.UNKNOWN
    root_device_type: ImageType = ImageType.STORAGE
    key_name: str | None = None
    region: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def is_persistent(self) -> bool:
        """Whether the instance can be stopped and started again."""
        return self.root_device_type is ImageType.VOLUME


@dataclass(kw_only=True)
class ScalingGroup:
    name: str
    launch_configuration: str | None = None
    min_size: int = 0
    max_size: int = 0
    desired_capacity: int = 0
    cooldown: int | None = None
    zones: list[str] = field(default_factory=list)
    instance_ids: list[str] = field(default_factory=list)
    load_balancers: list[str] = field(default_factory=list)
    suspended_processes: list[str] = field(default_factory=list)
    health_check_type: str | None = None
    health_check_grace_period: int | None = None
    subnet_ids: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    arn: str | None = None


@dataclass(kw_only=True)
class LaunchConfiguration:
    name: str
    image_id: str | None = None
    instance_type: str | None = None
    key_name: str | None = None
    security_groups: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    arn: str | None = None


@dataclass(kw_only=True)
class ScalingPolicy:
    name: str
    group_name: str | None = None
    adjustment_type: str | None = None
    scaling_adjustment: int = 0
    cooldown: int | None = None
    min_adjustment_step: int | None = None
    arn: str | None = None
