#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import base64
import hashlib
import hmac
import json
from typing import Any

import pytest

from aws_compute_adapter.aio.dispatch import QueryDispatcher
from aws_compute_adapter.aio.polling import PollCadence
from aws_compute_adapter.aio.tasks import TaskState
from aws_compute_adapter.compute.images import (
    BUNDLE_FAILED_MESSAGE,
    ImageSupport,
    image_from_record,
)
from aws_compute_adapter.compute.models import (
    Architecture,
    ImageState,
    ImageType,
    Platform,
)
from aws_compute_adapter.exceptions import (
    MissingCredentialsError,
    ProviderError,
    ResourceNotFoundError,
    TaskFailedError,
)
from aws_compute_adapter.testing import (
    MockHTTPTransport,
    create_test_dispatcher,
    create_test_identity,
    ec2_response,
    error_response,
    form_parameters,
)

IMMEDIATE = PollCadence(interval=0, timeout=None)
SINGLE_CHECK = PollCadence(interval=0, timeout=0)
RETURN_TRUE = "<return>true</return>"


def image_item(
    image_id: str,
    *,
    state: str = "available",
    name: str | None = None,
    description: str | None = None,
    platform: str | None = None,
    reason: str | None = None,
) -> str:
    return (
        f"<item><imageId>{image_id}</imageId>"
        f"<imageLocation>bucket/{image_id}.manifest.xml</imageLocation>"
        f"<imageState>{state}</imageState><imageOwnerId>123456789012</imageOwnerId>"
        "<isPublic>false</isPublic><architecture>x86_64</architecture>"
        "<imageType>machine</imageType><rootDeviceType>ebs</rootDeviceType>"
        + (f"<name>{name}</name>" if name else "")
        + (f"<description>{description}</description>" if description else "")
        + (f"<platform>{platform}</platform>" if platform else "")
        + (f"<stateReason><message>{reason}</message></stateReason>" if reason else "")
        + "<blockDeviceMapping><item><deviceName>/dev/sda1</deviceName>"
        "<ebs><snapshotId>snap-1</snapshotId><volumeSize>8</volumeSize></ebs>"
        "</item></blockDeviceMapping>"
        "</item>"
    )


def images(*items: str) -> bytes:
    return ec2_response("DescribeImages", f"<imagesSet>{''.join(items)}</imagesSet>")


def bundle(state: str, progress: str = "", error: str = "") -> bytes:
    return ec2_response(
        "DescribeBundleTasks",
        "<bundleInstanceTasksSet><item><instanceId>i-1</instanceId>"
        f"<bundleId>bun-1</bundleId><state>{state}</state>"
        f"<progress>{progress}</progress>{error}</item></bundleInstanceTasksSet>",
    )


BUNDLE_STARTED = ec2_response(
    "BundleInstance",
    "<bundleInstanceTask><instanceId>i-1</instanceId><bundleId>bun-1</bundleId>"
    "<state>pending</state></bundleInstanceTask>",
)


def launch_permissions(*entries: str) -> bytes:
    items = "".join(f"<item>{entry}</item>" for entry in entries)
    return ec2_response(
        "DescribeImageAttribute",
        f"<imageId>ami-1</imageId><launchPermission>{items}</launchPermission>",
    )


def record(**values: Any) -> dict[str, Any]:
    base: dict[str, Any] = dict.fromkeys(
        (
            "image_id",
            "location",
            "state",
            "owner_id",
            "is_public",
            "architecture",
            "image_type",
            "platform",
            "kernel_id",
            "ramdisk_id",
            "name",
            "description",
            "root_device_type",
            "state_reason",
        )
    )
    base.update(tags={}, block_devices=[])
    base.update(values)
    return base


@pytest.fixture
def support(dispatcher: QueryDispatcher) -> ImageSupport:
    images = ImageSupport(dispatcher, region="us-east-1")
    images.bundle_cadence = IMMEDIATE
    images.share_cadence = IMMEDIATE
    images.bundle_failure_grace = 0
    return images


class TestImageFromRecord:
    def test_names_fall_back_to_the_manifest(self) -> None:
        image = image_from_record(
            record(
                image_id="ami-1",
                location="my-bucket/ubuntu-web.manifest.xml",
                state="available",
                architecture="i386",
                is_public="true",
            )
        )
        assert image is not None
        assert image.name == "ubuntu-web"
        assert image.description == "ubuntu-web (i32 ubuntu)"
        assert image.platform is Platform.UBUNTU
        assert image.architecture is Architecture.I32
        assert image.image_type is ImageType.STORAGE
        assert image.state is ImageState.ACTIVE
        assert image.is_public

    def test_explicit_platform_wins(self) -> None:
        image = image_from_record(
            record(image_id="ami-1", name="ubuntu", platform="windows")
        )
        assert image is not None
        assert image.platform is Platform.WINDOWS
        assert image.description == "ubuntu (i64 windows)"

    @pytest.mark.parametrize(
        "state, expected",
        [
            ("pending", ImageState.PENDING),
            ("available", ImageState.ACTIVE),
            ("failed", ImageState.DELETED),
            ("deregistered", ImageState.DELETED),
        ],
    )
    def test_states(self, state: str, expected: ImageState) -> None:
        image = image_from_record(record(image_id="ami-1", state=state))
        assert image is not None
        assert image.state is expected

    @pytest.mark.parametrize("image_type", ["kernel", "ramdisk"])
    def test_non_machine_images_are_skipped(self, image_type: str) -> None:
        image = image_from_record(record(image_id="aki-1", image_type=image_type))
        assert image is None


async def test_get_image(support: ImageSupport, transport: MockHTTPTransport) -> None:
    transport.add_response(body=images(image_item("ami-1", name="web")))

    image = await support.get_image("ami-1")

    assert image is not None
    assert image.name == "web"
    assert image.region == "us-east-1"
    assert image.image_type is ImageType.VOLUME
    assert image.block_devices == [
        {
            "device_name": "/dev/sda1",
            "virtual_name": None,
            "snapshot_id": "snap-1",
            "volume_size": "8",
        }
    ]
    assert form_parameters(transport.captured_requests[0])["ImageId.1"] == "ami-1"


async def test_get_missing_image(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(
        status=400, body=error_response("InvalidAMIID.NotFound", "missing")
    )
    assert await support.get_image("ami-1") is None


async def test_list_images_yields_each_image_once(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(body=images(image_item("ami-1"), image_item("ami-2")))
    transport.add_response(body=images(image_item("ami-2"), image_item("ami-3")))

    listed = [image.image_id async for image in support.list_images()]

    assert listed == ["ami-1", "ami-2", "ami-3"]
    owned, executable = (form_parameters(r) for r in transport.captured_requests)
    assert owned["Owner.1"] == "123456789012"
    assert executable["ExecutableBy.1"] == "123456789012"
    assert transport.closed_count == 2


async def test_list_images_requires_an_account() -> None:
    transport = MockHTTPTransport()
    support = ImageSupport(create_test_dispatcher(transport, account_id=None))
    with pytest.raises(MissingCredentialsError):
        [image async for image in support.list_images()]
    assert transport.call_count == 0


async def test_search_public_images(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(
        body=images(
            image_item("ami-1", name="SQL Server", platform="windows"),
            image_item("ami-2", name="IIS", platform="windows"),
        )
    )

    found = await support.search_public_images(
        keyword="sql", platform=Platform.WINDOWS, architecture=Architecture.I32
    )

    assert [image.image_id for image in found] == ["ami-1"]
    parameters = form_parameters(transport.captured_requests[0])
    assert parameters["ExecutableBy.1"] == "all"
    assert parameters["Filter.1.Name"] == "architecture"
    assert parameters["Filter.1.Value.1"] == "i386"
    assert parameters["Filter.2.Name"] == "platform"
    assert parameters["Filter.2.Value.1"] == "windows"
    assert parameters["Filter.3.Name"] == "state"


async def test_search_unix_images_filters_locally(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(
        body=images(
            image_item("ami-1", name="ubuntu-12.04"),
            image_item("ami-2", name="win2008", platform="windows"),
            image_item("ami-3", name="mystery"),
        )
    )

    found = await support.search_public_images(platform=Platform.UNIX)

    assert [image.image_id for image in found] == ["ami-1"]
    assert "Filter.2.Name" not in form_parameters(transport.captured_requests[0])


async def test_capture_image(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(body=ec2_response("CreateImage", "<imageId>ami-9</imageId>"))
    transport.add_response(body=ec2_response("CreateTags", RETURN_TRUE))
    transport.add_response(body=images())
    transport.add_response(body=images(image_item("ami-9", state="pending")))
    transport.add_response(body=images(image_item("ami-9", name="web")))

    image = await support.capture_image(
        "i-1", "web", "nightly", tags={"env": "prod"}, cadence=IMMEDIATE
    )

    assert image.image_id == "ami-9"
    assert image.state is ImageState.ACTIVE
    create = form_parameters(transport.captured_requests[0])
    assert create["InstanceId"] == "i-1"
    assert create["Description"] == "nightly"
    prefix, _, millis = create["Name"].rpartition("-")
    assert prefix == "web"
    assert millis.isdigit()
    assert form_parameters(transport.captured_requests[1])["Tag.1.Key"] == "env"


async def test_capture_image_that_fails(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(body=ec2_response("CreateImage", "<imageId>ami-9</imageId>"))
    transport.add_response(body=images(image_item("ami-9", state="failed")))

    with pytest.raises(ResourceNotFoundError):
        await support.capture_image("i-1", "web", cadence=IMMEDIATE)


async def test_capture_image_failure_carries_provider_reason(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(body=ec2_response("CreateImage", "<imageId>ami-9</imageId>"))
    transport.add_response(
        body=images(
            image_item(
                "ami-9", state="failed", reason="Snapshot creation failed: volume busy"
            )
        )
    )

    with pytest.raises(ResourceNotFoundError) as exc_info:
        await support.capture_image("i-1", "web", cadence=IMMEDIATE)
    assert "Snapshot creation failed: volume busy" in str(exc_info.value)
    assert "ami-9" in str(exc_info.value)


async def test_capture_image_that_never_appears(
    support: ImageSupport, transport: MockHTTPTransport
) -> None:
    transport.add_response(body=ec2_response("CreateImage", "<imageId>ami-9</imageId>"))
    transport.add_response(body=images())
    transport.add_response(body=images())

    with pytest.raises(ResourceNotFoundError, match="never became visible"):
        await support.capture_image("i-1", "web", cadence=SINGLE_CHECK)


class TestBundleInstance:
    async def test_bundle_registers_manifest(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=BUNDLE_STARTED)
        transport.add_response(body=bundle("pending"))
        transport.add_response(body=bundle("bundling", "40%"))
        transport.add_response(body=bundle("storing", "60%"))
        transport.add_response(body=bundle("complete", "100%"))
        transport.add_response(
            body=ec2_response("RegisterImage", "<imageId>ami-7</imageId>")
        )

        task = await support.bundle_instance("i-1", "my-bucket", "web")

        assert await task.wait(timeout=5) == "ami-7"
        assert task.state is TaskState.SUCCEEDED
        assert task.percent_complete == 100
        register = form_parameters(transport.captured_requests[-1])
        assert register["ImageLocation"] == "my-bucket/web.manifest.xml"

    async def test_bundle_request_carries_signed_policy(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=BUNDLE_STARTED)
        transport.add_response(body=bundle("complete"))
        transport.add_response(
            body=ec2_response("RegisterImage", "<imageId>ami-7</imageId>")
        )

        task = await support.bundle_instance("i-1", "my-bucket", "web")
        await task.wait(timeout=5)

        parameters = form_parameters(transport.captured_requests[0])
        assert parameters["Storage.S3.Bucket"] == "my-bucket"
        assert parameters["Storage.S3.Prefix"] == "web"
        assert parameters["Storage.S3.AWSAccessKeyId"] == "AKIDEXAMPLE"
        encoded = parameters["Storage.S3.UploadPolicy"]
        policy = json.loads(base64.b64decode(encoded))
        assert policy["conditions"] == [
            {"bucket": "my-bucket"},
            {"acl": "ec2-bundle-read"},
            ["starts-with", "$key", "web"],
        ]
        secret = create_test_identity().secret_access_key.encode()
        expected = base64.b64encode(
            hmac.new(secret, encoded.encode(), hashlib.sha1).digest()
        ).decode()
        assert parameters["Storage.S3.UploadPolicySignature"] == expected

    async def test_failed_bundle_keeps_progress(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=BUNDLE_STARTED)
        transport.add_response(body=bundle("storing", "60%"))
        transport.add_response(
            body=bundle(
                "failed",
                "10%",
                "<error><code>Client.S3Error</code>"
                "<message>Bucket does not exist</message></error>",
            )
        )

        task = await support.bundle_instance("i-1", "my-bucket", "web")

        with pytest.raises(TaskFailedError, match="Bucket does not exist"):
            await task.wait(timeout=5)
        assert task.percent_complete == 80
        assert isinstance(task.error, ProviderError)
        assert task.error.code == "Client.S3Error"

    async def test_failed_bundle_without_reason(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=BUNDLE_STARTED)
        transport.add_response(body=bundle("failed"))

        task = await support.bundle_instance("i-1", "my-bucket", "web")

        with pytest.raises(TaskFailedError):
            await task.wait(timeout=5)
        assert str(task.error) == BUNDLE_FAILED_MESSAGE

    async def test_recovery_restarts_failure_grace(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        support.bundle_failure_grace = 60
        support.bundle_clock = iter([0.0, 100.0]).__next__
        transport.add_response(body=BUNDLE_STARTED)
        transport.add_response(body=bundle("failed"))
        transport.add_response(body=bundle("storing", "60%"))
        transport.add_response(body=bundle("failed"))
        transport.add_response(body=bundle("complete", "100%"))
        transport.add_response(
            body=ec2_response("RegisterImage", "<imageId>ami-7</imageId>")
        )

        task = await support.bundle_instance("i-1", "my-bucket", "web")

        assert await task.wait(timeout=5) == "ami-7"
        assert task.state is TaskState.SUCCEEDED

    async def test_bundle_without_id(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=ec2_response("BundleInstance", ""))
        with pytest.raises(ProviderError, match="bundle task ID"):
            await support.bundle_instance("i-1", "my-bucket", "web")


class TestSharing:
    async def test_add_share_waits_until_reflected(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=ec2_response("ModifyImageAttribute", RETURN_TRUE))
        transport.add_response(body=launch_permissions())
        transport.add_response(body=launch_permissions("<userId>111122223333</userId>"))

        await support.add_image_share("ami-1", "111122223333")

        parameters = form_parameters(transport.captured_requests[0])
        assert parameters["LaunchPermission.Add.1.UserId"] == "111122223333"
        assert transport.call_count == 3

    async def test_share_that_never_reflects(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        support.share_cadence = SINGLE_CHECK
        transport.add_response(body=ec2_response("ModifyImageAttribute", RETURN_TRUE))
        transport.add_response(body=launch_permissions())

        await support.add_image_share("ami-1", "111122223333")

        assert transport.call_count == 2

    async def test_remove_public_share(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(body=ec2_response("ModifyImageAttribute", RETURN_TRUE))
        transport.add_response(body=launch_permissions("<group>all</group>"))
        transport.add_response(body=launch_permissions())

        await support.remove_public_share("ami-1")

        parameters = form_parameters(transport.captured_requests[0])
        assert parameters["LaunchPermission.Remove.1.Group"] == "all"

    async def test_share_of_vanished_image(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(
            status=400, body=error_response("InvalidImageID.NotFound", "missing")
        )
        await support.remove_image_share("ami-1", "111122223333")
        assert transport.call_count == 1

    async def test_share_queries(
        self, support: ImageSupport, transport: MockHTTPTransport
    ) -> None:
        transport.add_response(
            body=launch_permissions("<userId>111122223333</userId>")
        )
        transport.add_response(body=launch_permissions("<group>all</group>"))
        transport.add_response(
            status=400, body=error_response("InvalidImageID.Malformed", "bad")
        )

        assert await support.list_shares("ami-1") == ["111122223333"]
        assert await support.is_image_shared_with_public("ami-1")
        assert await support.list_shares("ami-?") == []


async def test_remove(support: ImageSupport, transport: MockHTTPTransport) -> None:
    transport.add_response(body=ec2_response("DeregisterImage", RETURN_TRUE))
    await support.remove("ami-1")
    parameters = form_parameters(transport.captured_requests[0])
    assert parameters["Action"] == "DeregisterImage"
    assert parameters["ImageId"] == "ami-1"
