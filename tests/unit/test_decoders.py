#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from typing import Any

import pytest
from lxml import etree

from aws_compute_adapter.aio.utils import async_list
from aws_compute_adapter.decoders import (
    ItemList,
    RecordSchema,
    StreamingItemDecoder,
    TagSet,
    Text,
    TextList,
    XmlDocument,
    parse_error_envelope,
)

IMAGES = b"""<?xml version="1.0" encoding="UTF-8"?>
<DescribeImagesResponse xmlns="http://ec2.amazonaws.com/doc/2012-07-20/">
  <requestId>59dbff89-35bd-4eac-99ed-be587EXAMPLE</requestId>
  <imagesSet>
    <item>
      <imageId> ami-1a2b3c4d </imageId>
      <name></name>
      <blockDeviceMapping>
        <item><deviceName>/dev/sda1</deviceName></item>
        <item><deviceName>/dev/sdb</deviceName></item>
        <item><deviceName>/dev/sdc</deviceName></item>
      </blockDeviceMapping>
      <tagSet>
        <item><key>Name</key><value>web</value></item>
        <item><key>empty</key><value/></item>
      </tagSet>
    </item>
    <item>
      <imageId>ami-5e6f7a8b</imageId>
      <name>  base  </name>
      <blockDeviceMapping>
        <item><deviceName>/dev/sda1</deviceName></item>
      </blockDeviceMapping>
    </item>
  </imagesSet>
  <trailer><item><imageId>ami-ignored</imageId></item></trailer>
</DescribeImagesResponse>
"""

SCHEMA = RecordSchema(
    image_id=Text("imageId"),
    name=Text("name"),
    devices=ItemList("blockDeviceMapping", RecordSchema(device=Text("deviceName"))),
    tags=TagSet(),
)


def chunks(body: bytes, size: int) -> list[bytes]:
    return [body[i : i + size] for i in range(0, len(body), size)]


class TestXmlDocument:
    def test_lookups_ignore_namespaces(self) -> None:
        document = XmlDocument.from_bytes(IMAGES)
        assert document.first_text("requestId") == (
            "59dbff89-35bd-4eac-99ed-be587EXAMPLE"
        )
        assert len(document.find_all("imageId")) == 3
        assert document.first_text("missing") is None

    def test_items_are_top_level_only(self) -> None:
        document = XmlDocument.from_bytes(IMAGES)
        assert len(document.items("imagesSet")) == 2
        assert document.items("missingSet") == []

    def test_decode_items(self) -> None:
        records = XmlDocument.from_bytes(IMAGES).decode_items("imagesSet", SCHEMA)
        assert records == [
            {
                "image_id": "ami-1a2b3c4d",
                "name": None,
                "devices": [
                    {"device": "/dev/sda1"},
                    {"device": "/dev/sdb"},
                    {"device": "/dev/sdc"},
                ],
                "tags": {"Name": "web", "empty": ""},
            },
            {
                "image_id": "ami-5e6f7a8b",
                "name": "base",
                "devices": [{"device": "/dev/sda1"}],
                "tags": {},
            },
        ]

    @pytest.mark.parametrize(
        "body, expected",
        [
            (
                b"<DeleteVolumeResponse><return>true</return></DeleteVolumeResponse>",
                True,
            ),
            (b"<R><return> TRUE </return></R>", True),
            (b"<R><return>false</return></R>", False),
            (b"<R/>", False),
        ],
    )
    def test_return_value(self, body: bytes, expected: bool) -> None:
        assert XmlDocument.from_bytes(body).return_value() is expected

    def test_malformed_body(self) -> None:
        with pytest.raises(etree.XMLSyntaxError):
            XmlDocument.from_bytes(b"<unclosed>")

    def test_entities_are_not_resolved(self) -> None:
        body = (
            b'<?xml version="1.0"?><!DOCTYPE r [<!ENTITY e "expanded">]>'
            b"<r><v>&e;</v></r>"
        )
        assert XmlDocument.from_bytes(body).first_text("v") != "expanded"


def test_text_converter_applies_to_present_values() -> None:
    element = etree.fromstring(b"<m><MinSize> 2 </MinSize><MaxSize/></m>")
    assert Text("MinSize", int).decode(element) == 2
    assert Text("MaxSize", int).decode(element) is None


def test_text_list_reads_member_values() -> None:
    element = etree.fromstring(
        b"<m><Instances>"
        b"<member><InstanceId>i-1</InstanceId></member>"
        b"<member><InstanceId> </InstanceId></member>"
        b"<member><InstanceId>i-2</InstanceId></member>"
        b"</Instances><Zones><member>a</member><member>b</member></Zones></m>"
    )
    assert TextList("Instances", "member", "InstanceId").decode(element) == [
        "i-1",
        "i-2",
    ]
    assert TextList("Zones", "member").decode(element) == ["a", "b"]
    assert TextList("Missing").decode(element) == []


class TestStreamingItemDecoder:
    @pytest.mark.parametrize("chunk_size", [5, 7, 64, len(IMAGES)])
    async def test_nested_items_do_not_end_records(self, chunk_size: int) -> None:
        decoder: StreamingItemDecoder[dict[str, Any]] = StreamingItemDecoder(
            "imagesSet", SCHEMA
        )
        body = async_list(chunks(IMAGES, chunk_size))
        records = [record async for record in decoder.decode(body)]
        assert [r["image_id"] for r in records] == ["ami-1a2b3c4d", "ami-5e6f7a8b"]
        assert [len(r["devices"]) for r in records] == [3, 1]
        assert records[0]["tags"] == {"Name": "web", "empty": ""}
        assert decoder.finished

    @pytest.mark.parametrize("records, nested", [(0, 0), (1, 5), (4, 2), (25, 3)])
    async def test_emits_one_record_per_top_level_item(
        self, records: int, nested: int
    ) -> None:
        nested_items = "".join(
            f"<item><deviceName>/dev/sd{n}</deviceName></item>" for n in range(nested)
        )
        body = (
            "<DescribeImagesResponse><imagesSet>"
            + "".join(
                f"<item><imageId>ami-{i}</imageId>"
                f"<blockDeviceMapping>{nested_items}</blockDeviceMapping></item>"
                for i in range(records)
            )
            + "</imagesSet></DescribeImagesResponse>"
        ).encode()
        decoder: StreamingItemDecoder[dict[str, Any]] = StreamingItemDecoder(
            "imagesSet", SCHEMA
        )
        stream = async_list(chunks(body, 50))
        decoded = [record async for record in decoder.decode(stream)]
        assert [r["image_id"] for r in decoded] == [f"ami-{i}" for i in range(records)]
        assert all(len(r["devices"]) == nested for r in decoded)

    def test_feed_returns_completed_records(self) -> None:
        decoder: StreamingItemDecoder[dict[str, Any]] = StreamingItemDecoder(
            "imagesSet", RecordSchema(image_id=Text("imageId"))
        )
        assert decoder.feed(b"<r><imagesSet><item><imageId>ami-1</imageId>") == []
        completed = decoder.feed(
            b"</item><item><imageId>ami-2</imageId></item></imagesSet></r>"
        )
        assert completed == [{"image_id": "ami-1"}, {"image_id": "ami-2"}]
        assert decoder.finished
        assert decoder.close() == []

    def test_factory_builds_and_filters_records(self) -> None:
        decoder = StreamingItemDecoder(
            "imagesSet",
            RecordSchema(image_id=Text("imageId")),
            factory=lambda record: None
            if record["image_id"] == "aki-1"
            else record["image_id"].upper(),
        )
        body = (
            b"<r><imagesSet><item><imageId>ami-1</imageId></item>"
            b"<item><imageId>aki-1</imageId></item></imagesSet></r>"
        )
        assert decoder.feed(body) == ["AMI-1"]

    def test_member_tagged_collections(self) -> None:
        decoder: StreamingItemDecoder[dict[str, Any]] = StreamingItemDecoder(
            "AutoScalingGroups",
            RecordSchema(
                name=Text("AutoScalingGroupName"),
                instances=TextList("Instances", "member", "InstanceId"),
            ),
            item_tag="member",
        )
        body = (
            b"<DescribeAutoScalingGroupsResponse><DescribeAutoScalingGroupsResult>"
            b"<AutoScalingGroups><member><AutoScalingGroupName>web"
            b"</AutoScalingGroupName><Instances>"
            b"<member><InstanceId>i-1</InstanceId></member>"
            b"<member><InstanceId>i-2</InstanceId></member>"
            b"</Instances></member></AutoScalingGroups>"
            b"</DescribeAutoScalingGroupsResult></DescribeAutoScalingGroupsResponse>"
        )
        assert decoder.feed(body) == [{"name": "web", "instances": ["i-1", "i-2"]}]

    async def test_malformed_body_raises(self) -> None:
        decoder: StreamingItemDecoder[dict[str, Any]] = StreamingItemDecoder(
            "imagesSet", SCHEMA
        )
        with pytest.raises(etree.XMLSyntaxError):
            async for _ in decoder.decode(async_list([b"<r><imagesSet><item>"])):
                pass


@pytest.mark.parametrize(
    "body, expected",
    [
        (
            b"<Response><Errors><Error><Code>InvalidAMIID.NotFound</Code>"
            b"<Message>The image id does not exist</Message></Error></Errors>"
            b"<RequestID>req-1</RequestID></Response>",
            ("InvalidAMIID.NotFound", "The image id does not exist", "req-1"),
        ),
        (
            b"<ErrorResponse><Error><Code>Throttling</Code><Message>Rate exceeded"
            b"</Message></Error><RequestId>req-2</RequestId></ErrorResponse>",
            ("Throttling", "Rate exceeded", "req-2"),
        ),
        (b"<html>Service Unavailable</html>", (None, None, None)),
        (b"not xml at all", (None, None, None)),
        (b"", (None, None, None)),
    ],
)
def test_parse_error_envelope(
    body: bytes, expected: tuple[str | None, str | None, str | None]
) -> None:
    assert parse_error_envelope(body) == expected
