"""Tests for fire-and-forget CloudWatch business metrics."""

from unittest.mock import MagicMock, patch

import pytest

from tenant_licensing.metrics import cloudwatch

pytestmark = pytest.mark.unit


def test_put_business_event_dimensions():
    client = MagicMock()

    with patch.object(cloudwatch, "_get_client", return_value=client):
        cloudwatch._put_business_event("TenantLicensing/Business", "license_activated", tenant_id="t-1")

    kwargs = client.put_metric_data.call_args.kwargs
    assert kwargs["Namespace"] == "TenantLicensing/Business"
    metric = kwargs["MetricData"][0]
    assert metric["MetricName"] == "EventCount"
    assert metric["Dimensions"] == [
        {"Name": "Event", "Value": "license_activated"},
        {"Name": "TenantId", "Value": "t-1"},
    ]


def test_put_business_event_swallows_client_errors():
    client = MagicMock()
    client.put_metric_data.side_effect = RuntimeError("throttled")

    with patch.object(cloudwatch, "_get_client", return_value=client):
        cloudwatch._put_business_event("ns", "license_refunded")


def test_put_business_event_logs_failed_event_name():
    client = MagicMock()
    client.put_metric_data.side_effect = RuntimeError("throttled")

    with (
        patch.object(cloudwatch, "_get_client", return_value=client),
        patch.object(cloudwatch, "logger") as logger,
    ):
        cloudwatch._put_business_event("ns", "license_activated", tenant_id="t-1")

    logger.warning.assert_called_once_with(
        "business_event_emit_failed", error="throttled", event_name="license_activated"
    )


async def test_emit_is_noop_when_disabled():
    settings = MagicMock(metrics_enabled=False)

    with (
        patch.object(cloudwatch, "get_settings", return_value=settings),
        patch.object(cloudwatch, "_put_business_event") as put,
    ):
        await cloudwatch.emit_business_event("license_activated", tenant_id="t-1")

    put.assert_not_called()


async def test_emit_dispatches_to_executor_when_enabled():
    settings = MagicMock(metrics_enabled=True, metrics_namespace="ns")
    loop = MagicMock()

    with (
        patch.object(cloudwatch, "get_settings", return_value=settings),
        patch.object(cloudwatch.asyncio, "get_running_loop", return_value=loop),
    ):
        await cloudwatch.emit_business_event("license_renewed", tenant_id="t-1")

    loop.run_in_executor.assert_called_once_with(
        cloudwatch._executor, cloudwatch._put_business_event, "ns", "license_renewed", "t-1", 1.0
    )
