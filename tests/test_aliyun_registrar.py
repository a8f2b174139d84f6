"""Unit tests for AliyunRegistrar."""

import ipaddress
from types import SimpleNamespace
from typing import Any
from unittest.mock import patch

import pytest
import requests
from Tea.exceptions import TeaException

from ddns_keeper.errors import (
    ConfigError,
    LookupAmbiguous,
    LookupFailed,
    TransportError,
    WriteFailed,
)
from ddns_keeper.records import ReconcileOutcome, RecordSpec, RecordType, RegistrarKind
from ddns_keeper.registrars import AliyunRegistrar


def make_spec(name: str = "home") -> RecordSpec:
    return RecordSpec(
        registrar=RegistrarKind.ALIYUN,
        zone="example.com",
        domain="example.com",
        name=name,
        record_type=RecordType.A,
        ttl=600,
        ip_address_from_cmd="discover",
    )


def make_record(record_id: str, value: str, rr: str = "home", type: str = "A") -> SimpleNamespace:
    return SimpleNamespace(record_id=record_id, value=value, rr=rr, type=type)


def describe_response(*records: SimpleNamespace) -> SimpleNamespace:
    """Shape of DescribeSubDomainRecordsResponse as read by the registrar."""
    return SimpleNamespace(
        body=SimpleNamespace(
            total_count=len(records),
            domain_records=SimpleNamespace(record=list(records)),
        )
    )


def make_registrar(**kwargs: Any) -> AliyunRegistrar:
    return AliyunRegistrar(key_id="testid", key_secret="testsecret", **kwargs)


def test_missing_keys_rejected() -> None:
    with pytest.raises(ConfigError):
        AliyunRegistrar(key_id="", key_secret="secret")


def test_client_config_carries_credentials_endpoint_and_timeouts() -> None:
    with patch("ddns_keeper.registrars.AlidnsClient") as mock_client:
        AliyunRegistrar(
            key_id="testid",
            key_secret="testsecret",
            endpoint="alidns.cn-hangzhou.aliyuncs.com",
            timeout_seconds=2.5,
        )

    config = mock_client.call_args[0][0]
    assert config.access_key_id == "testid"
    assert config.access_key_secret == "testsecret"
    assert config.endpoint == "alidns.cn-hangzhou.aliyuncs.com"
    assert config.connect_timeout == 2500
    assert config.read_timeout == 2500


def test_empty_endpoint_falls_back_to_default() -> None:
    with patch("ddns_keeper.registrars.AlidnsClient") as mock_client:
        AliyunRegistrar(key_id="testid", key_secret="testsecret", endpoint="")

    assert mock_client.call_args[0][0].endpoint == "alidns.aliyuncs.com"


class TestAliyunFindRecords:
    """Tests for AliCloud DNS record lookup."""

    def test_find_records_sends_describe_request(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe:
            mock_describe.return_value = describe_response(make_record("9999", "1.2.3.4"))

            records = registrar.find_records(make_spec())

        assert [(r.record_id, r.content, r.name) for r in records] == [("9999", "1.2.3.4", "home")]
        request, runtime = mock_describe.call_args[0]
        assert request.domain_name == "example.com"
        assert request.sub_domain == "home.example.com"
        assert request.type == "A"
        assert runtime.read_timeout == 10000

    def test_configured_record_id_narrows_matches(self) -> None:
        registrar = make_registrar(record_id="2")

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe:
            mock_describe.return_value = describe_response(
                make_record("1", "1.2.3.4"), make_record("2", "5.6.7.8")
            )

            records = registrar.find_records(make_spec())

        assert [r.record_id for r in records] == ["2"]

    def test_empty_body_yields_no_records(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe:
            mock_describe.return_value = SimpleNamespace(
                body=SimpleNamespace(domain_records=None)
            )

            assert registrar.find_records(make_spec()) == []

    def test_api_error_is_lookup_failed(self) -> None:
        registrar = make_registrar()
        error = TeaException(
            {
                "code": "InvalidAccessKeyId.NotFound",
                "message": "Specified access key is not found.",
            }
        )

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe:
            mock_describe.side_effect = error

            with pytest.raises(LookupFailed, match="InvalidAccessKeyId.NotFound"):
                registrar.find_records(make_spec())

    def test_network_error_is_transport_error(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe:
            mock_describe.side_effect = requests.exceptions.ConnectionError("connection refused")

            with pytest.raises(TransportError):
                registrar.find_records(make_spec())


class TestAliyunReconcile:
    """Tests for the AliCloud DNS compare-and-update flow."""

    def test_same_value_is_unchanged_without_update(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe, patch.object(
            registrar._client, "update_domain_record_with_options"
        ) as mock_update:
            mock_describe.return_value = describe_response(make_record("9999", "203.0.113.9"))

            outcome = registrar.reconcile(make_spec(), ipaddress.ip_address("203.0.113.9"))

        assert outcome is ReconcileOutcome.UNCHANGED
        assert mock_describe.call_count == 1
        assert mock_update.call_count == 0

    def test_different_value_sends_update(self) -> None:
        registrar = make_registrar(line="telecom")

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe, patch.object(
            registrar._client, "update_domain_record_with_options"
        ) as mock_update:
            mock_describe.return_value = describe_response(make_record("9999", "203.0.113.5"))

            outcome = registrar.reconcile(make_spec(), ipaddress.ip_address("203.0.113.9"))

        assert outcome is ReconcileOutcome.UPDATED
        assert mock_update.call_count == 1
        request = mock_update.call_args[0][0]
        assert request.record_id == "9999"
        assert request.rr == "home"
        assert request.type == "A"
        assert request.value == "203.0.113.9"
        assert request.ttl == 600
        assert request.line == "telecom"

    def test_apex_record_uses_at_sign(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe, patch.object(
            registrar._client, "update_domain_record_with_options"
        ) as mock_update:
            mock_describe.return_value = describe_response(
                make_record("9999", "203.0.113.5", rr="@")
            )

            registrar.reconcile(make_spec(name="@"), ipaddress.ip_address("203.0.113.9"))

        assert mock_describe.call_args[0][0].sub_domain == "example.com"
        assert mock_update.call_args[0][0].rr == "@"

    def test_no_matching_record_is_ambiguous(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe, patch.object(
            registrar._client, "update_domain_record_with_options"
        ) as mock_update:
            mock_describe.return_value = describe_response()

            with pytest.raises(LookupAmbiguous):
                registrar.reconcile(make_spec(), ipaddress.ip_address("203.0.113.9"))

        assert mock_update.call_count == 0

    def test_rejected_update_is_write_failed(self) -> None:
        registrar = make_registrar()
        error = TeaException({"code": "Forbidden.RAM", "message": "User not authorized"})

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe, patch.object(
            registrar._client, "update_domain_record_with_options"
        ) as mock_update:
            mock_describe.return_value = describe_response(make_record("9999", "203.0.113.5"))
            mock_update.side_effect = error

            with pytest.raises(WriteFailed, match="Forbidden.RAM"):
                registrar.reconcile(make_spec(), ipaddress.ip_address("203.0.113.9"))

    def test_update_network_error_is_transport_error(self) -> None:
        registrar = make_registrar()

        with patch.object(
            registrar._client, "describe_sub_domain_records_with_options"
        ) as mock_describe, patch.object(
            registrar._client, "update_domain_record_with_options"
        ) as mock_update:
            mock_describe.return_value = describe_response(make_record("9999", "203.0.113.5"))
            mock_update.side_effect = requests.exceptions.ReadTimeout("read timed out")

            with pytest.raises(TransportError):
                registrar.reconcile(make_spec(), ipaddress.ip_address("203.0.113.9"))
