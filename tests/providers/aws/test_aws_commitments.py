from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import client_factory

from fleetward.providers.aws.commitments import (
    get_reserved_instances,
    get_savings_plans,
    reserved_instance_commitment,
    savings_plan_commitment,
    zone_to_region,
)

pytestmark = [pytest.mark.unit]

ONE_YEAR = 31_536_000


def reserved(**extra: Any) -> dict[str, Any]:
    return {
        "ReservedInstancesId": "ri-123",
        "InstanceType": "m5.xlarge",
        "InstanceCount": 2,
        "FixedPrice": 876.0,
        "Duration": ONE_YEAR,
        "UsagePrice": 0.192,
        "RecurringCharges": [{"Frequency": "Hourly", "Amount": 0.01}],
        "End": datetime(2027, 1, 1),
        "Scope": "Region",
        "State": "active",
        **extra,
    }


def plan(**extra: Any) -> dict[str, Any]:
    return {
        "savingsPlanId": "sp-1",
        "savingsPlanType": "Compute",
        "commitment": "7.0",
        "region": "",
        "end": "2027-06-01T00:00:00.000Z",
        "state": "active",
        **extra,
    }


@pytest.mark.parametrize(
    ("zone", "region"),
    [("us-east-1a", "us-east-1"), ("eu-west-2c", "eu-west-2"), ("us-east-1", "us-east-1"), ("", "")],
)
def test_zone_to_region(zone: str, region: str):
    assert zone_to_region(zone) == region


class TestReservedInstance:
    def test_normalized(self):
        c = reserved_instance_commitment(reserved(), "us-east-1")
        assert c.type == "reserved-instance"
        assert c.instance_family == "m5"
        assert c.count == 2
        # 876 / 8760h / 2 + 0.01
        assert c.hourly_cost_usd == pytest.approx(0.06)
        assert c.on_demand_cost_usd == 0.192
        assert c.region == "us-east-1"
        assert c.expires_at == datetime(2027, 1, 1, tzinfo=UTC)

    def test_zonal_scope(self):
        c = reserved_instance_commitment(
            reserved(Scope="Availability Zone", AvailabilityZone="us-west-2b"), "us-east-1",
        )
        assert c.region == "us-west-2"

    def test_string_end(self):
        c = reserved_instance_commitment(reserved(End="2027-01-01T00:00:00Z"), "us-east-1")
        assert c.expires_at == datetime(2027, 1, 1, tzinfo=UTC)

    def test_no_upfront(self):
        c = reserved_instance_commitment(
            reserved(FixedPrice=0.0, RecurringCharges=[{"Frequency": "Hourly", "Amount": 0.12}]),
            "us-east-1",
        )
        assert c.hourly_cost_usd == pytest.approx(0.12)


class TestSavingsPlan:
    def test_compute_plan(self):
        c = savings_plan_commitment(plan())
        assert c is not None
        assert c.type == "compute-savings-plan"
        assert c.hourly_cost_usd == 7.0
        assert c.on_demand_cost_usd == pytest.approx(10.0)
        assert c.instance_family == ""
        assert c.expires_at == datetime(2027, 6, 1, tzinfo=UTC)

    def test_instance_plan(self):
        c = savings_plan_commitment(
            plan(savingsPlanType="EC2Instance", ec2InstanceFamily="m5", commitment="6"),
        )
        assert c is not None
        assert c.type == "ec2-instance-savings-plan"
        assert c.instance_family == "m5"
        assert c.on_demand_cost_usd == pytest.approx(10.0)

    def test_sagemaker_skipped(self):
        assert savings_plan_commitment(plan(savingsPlanType="SageMaker")) is None


class TestFetch:
    async def test_reserved_instances(self):
        client = MagicMock()
        client.describe_reserved_instances = AsyncMock(return_value={
            "ReservedInstances": [reserved(), {"InstanceType": "c5.large"}],
        })
        found = await get_reserved_instances(client_factory(client), "us-east-1")
        assert [c.id for c in found] == ["ri-123"]
        filters = client.describe_reserved_instances.await_args.kwargs["Filters"]
        assert filters == [{"Name": "state", "Values": ["active"]}]

    async def test_savings_plans_paginated(self):
        client = MagicMock()
        client.describe_savings_plans = AsyncMock(side_effect=[
            {"savingsPlans": [plan(), plan(savingsPlanId="sp-sm", savingsPlanType="SageMaker")],
             "nextToken": "t"},
            {"savingsPlans": [plan(savingsPlanId="sp-2", commitment="bogus")]},
        ])
        found = await get_savings_plans(client_factory(client), "us-east-1")
        assert [c.id for c in found] == ["sp-1"]
        assert client.describe_savings_plans.await_args_list[1].kwargs["nextToken"] == "t"
