#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import dataclasses

import pytest

from aws_compute_adapter.query import QueryRequest, encode_form


def test_builder_skips_none_and_stringifies() -> None:
    request = (
        QueryRequest.builder("CreateVolume")
        .set("SnapshotId", None)
        .set("Size", 10)
        .set("Encrypted", False)
        .set("Force", True)
        .set("AvailabilityZone", "us-east-1a")
        .build()
    )
    assert request.action == "CreateVolume"
    assert request.parameters == (
        ("Size", "10"),
        ("Encrypted", "false"),
        ("Force", "true"),
        ("AvailabilityZone", "us-east-1a"),
    )


def test_pairs_put_action_first() -> None:
    request = QueryRequest.builder("DescribeImages").set("Owner.1", "self").build()
    assert request.pairs() == (("Action", "DescribeImages"), ("Owner.1", "self"))
    assert list(request) == list(request.pairs())


def test_add_list_numbers_from_start() -> None:
    request = (
        QueryRequest.builder("DescribeInstances")
        .add_list("InstanceId", ["i-1", "i-2"])
        .add_list("AvailabilityZones.member", ["a", "b"], start=3)
        .build()
    )
    assert request.parameters == (
        ("InstanceId.1", "i-1"),
        ("InstanceId.2", "i-2"),
        ("AvailabilityZones.member.3", "a"),
        ("AvailabilityZones.member.4", "b"),
    )


def test_add_filter_numbers_each_group() -> None:
    request = (
        QueryRequest.builder("DescribeImages")
        .add_filter("architecture", "x86_64")
        .add_filter("state", "available", "pending")
        .build()
    )
    assert dict(request.parameters) == {
        "Filter.1.Name": "architecture",
        "Filter.1.Value.1": "x86_64",
        "Filter.2.Name": "state",
        "Filter.2.Value.1": "available",
        "Filter.2.Value.2": "pending",
    }


def test_request_is_immutable() -> None:
    request = QueryRequest.builder("DescribeImages").build()
    with pytest.raises(dataclasses.FrozenInstanceError):
        request.action = "DeregisterImage"  # type: ignore[misc]


def test_builder_changes_do_not_reach_built_requests() -> None:
    builder = QueryRequest.builder("DescribeImages").set("Owner.1", "self")
    first = builder.build()
    builder.set("Owner.2", "amazon")
    assert first.parameters == (("Owner.1", "self"),)
    assert builder.build().get("Owner.2") == "amazon"


def test_with_parameters_replaces_appends_and_removes() -> None:
    request = (
        QueryRequest.builder("DescribeImages")
        .set("Owner.1", "self")
        .set("ImageId.1", "ami-1")
        .build()
    )
    updated = request.with_parameters(
        {"Owner.1": "amazon", "ImageId.1": None, "Version": "2012-07-20"}
    )
    assert updated.parameters == (("Owner.1", "amazon"), ("Version", "2012-07-20"))
    assert request.get("ImageId.1") == "ami-1"
    assert request.get("Version") is None


def test_encode_form_preserves_order() -> None:
    assert encode_form([("b", "x y"), ("a", "1*2")]) == "b=x%20y&a=1%2A2"
