"""Registrar clients: look up a record and update it when the address changed.

Supported registrars:
    - cloudflare: Cloudflare API v4 (DNS records endpoint)
    - aliyun: AliCloud DNS (Alidns 2015-01-09 SDK)
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Type

import requests
from alibabacloud_alidns20150109 import models as alidns_models
from alibabacloud_alidns20150109.client import Client as AlidnsClient
from alibabacloud_tea_openapi import models as open_api_models
from alibabacloud_tea_util import models as util_models
from Tea.exceptions import TeaException, UnretryableException

from .errors import (
    ConfigError,
    LookupAmbiguous,
    LookupFailed,
    RegistrarError,
    TransportError,
    UnsupportedRecordType,
    WriteFailed,
)
from .records import (
    IPAddress,
    ReconcileOutcome,
    RecordSpec,
    RecordType,
    RegistrarKind,
    RegistrarRecordState,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

# =============================================================================
# Registrar Interface
# =============================================================================


def addresses_equal(content: str, desired: IPAddress) -> bool:
    """Compare registrar content with an address after canonicalizing both.

    "2001:db8::1" and "2001:0db8:0:0:0:0:0:1" are equal; content that is not an
    address literal never matches.
    """
    try:
        return ipaddress.ip_address((content or "").strip()) == desired
    except ValueError:
        return False


class Registrar(ABC):
    """Abstract base class for registrar clients.

    Subclasses provide the wire-level lookup and update; reconcile() holds the
    provider-agnostic compare-and-update algorithm.
    """

    supported_record_types: FrozenSet[RecordType] = frozenset({RecordType.A, RecordType.AAAA})

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the registrar name for logging."""
        pass

    @abstractmethod
    def find_records(self, spec: RecordSpec) -> List[RegistrarRecordState]:
        """Return every record matching (zone, name, type) of the spec."""
        pass

    @abstractmethod
    def update_record(
        self, spec: RecordSpec, current: RegistrarRecordState, desired: IPAddress
    ) -> None:
        """Write the desired address to an existing record.

        Raises:
            WriteFailed: If the registrar rejects the update.
            TransportError: If the registrar cannot be reached.
        """
        pass

    def reconcile(self, spec: RecordSpec, desired: IPAddress) -> ReconcileOutcome:
        """Bring the registrar's record in line with the desired address."""
        if spec.record_type not in self.supported_record_types:
            raise UnsupportedRecordType(
                f"{self.name} does not support {spec.record_type.value} records"
            )

        matches = self.find_records(spec)
        if len(matches) != 1:
            # Never guess which record to update.
            raise LookupAmbiguous(
                f"{self.name} returned {len(matches)} {spec.record_type.value} records "
                f"for {spec.fqdn}, expected exactly 1"
            )

        current = matches[0]
        logger.debug(f"[{spec.fqdn}] {self.name} record {current.record_id} holds {current.content}")
        if addresses_equal(current.content, desired):
            logger.info(f"[{spec.fqdn}] {self.name} record already up to date ({desired})")
            return ReconcileOutcome.UNCHANGED

        logger.info(f"[{spec.fqdn}] Updating {self.name} record: {current.content} -> {desired}")
        self.update_record(spec, current, desired)
        logger.info(f"[{spec.fqdn}] {self.name} record updated to {desired}")
        return ReconcileOutcome.UPDATED


def _decode_json(response: requests.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# =============================================================================
# Cloudflare
# =============================================================================


class CloudflareRegistrar(Registrar):
    """Cloudflare API v4 registrar client."""

    API_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        *,
        api_key: str = "",
        email: str = "",
        api_token: str = "",
        api_url: str = API_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        if not api_token and not (api_key and email):
            raise ConfigError("cloudflare requires either api_token or api_key + email")
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        if api_token:
            self._session.headers["Authorization"] = f"Bearer {api_token}"
        else:
            self._session.headers["X-Auth-Email"] = email
            self._session.headers["X-Auth-Key"] = api_key

    @property
    def name(self) -> str:
        return "Cloudflare"

    def find_records(self, spec: RecordSpec) -> List[RegistrarRecordState]:
        url = f"{self._api_url}/zones/{spec.zone}/dns_records"
        params = {"type": spec.record_type.value, "name": spec.fqdn, "match": "all"}
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{self.name} lookup for {spec.fqdn} failed: {e}") from e

        data = _decode_json(response)
        if not response.ok or not data.get("success"):
            raise LookupFailed(
                f"{self.name} lookup for {spec.fqdn} returned status {response.status_code}: "
                f"{data.get('errors') or response.text}"
            )

        result = data.get("result")
        if not isinstance(result, list):
            raise LookupFailed(f"{self.name} lookup for {spec.fqdn} returned no result list")

        records = [
            RegistrarRecordState(
                record_id=str(r.get("id") or ""),
                content=str(r.get("content") or ""),
                name=str(r.get("name") or ""),
                record_type=str(r.get("type") or ""),
            )
            for r in result
            if isinstance(r, dict)
        ]

        count = (data.get("result_info") or {}).get("count")
        if isinstance(count, int) and count != len(records):
            raise LookupAmbiguous(
                f"{self.name} reported {count} records for {spec.fqdn} "
                f"but returned {len(records)}"
            )
        return records

    def update_record(
        self, spec: RecordSpec, current: RegistrarRecordState, desired: IPAddress
    ) -> None:
        url = f"{self._api_url}/zones/{spec.zone}/dns_records/{current.record_id}"
        payload = {
            "type": spec.record_type.value,
            "name": spec.fqdn,
            "content": str(desired),
            "ttl": spec.ttl,
            "proxied": spec.proxied,
        }
        try:
            response = self._session.put(url, json=payload, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{self.name} update for {spec.fqdn} failed: {e}") from e

        data = _decode_json(response)
        if not response.ok or not data.get("success"):
            raise WriteFailed(
                f"{self.name} update for {spec.fqdn} returned status {response.status_code}: "
                f"{data.get('errors') or response.text}"
            )


# =============================================================================
# AliCloud DNS
# =============================================================================


class AliyunRegistrar(Registrar):
    """AliCloud DNS registrar client built on the Alidns 2015-01-09 SDK."""

    DEFAULT_ENDPOINT = "alidns.aliyuncs.com"

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        endpoint: str = DEFAULT_ENDPOINT,
        line: str = "default",
        record_id: str = "",
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        if not key_id or not key_secret:
            raise ConfigError("aliyun requires key_id and key_secret")
        timeout_ms = int(timeout_seconds * 1000)
        self._client = AlidnsClient(
            open_api_models.Config(
                access_key_id=key_id,
                access_key_secret=key_secret,
                endpoint=endpoint or self.DEFAULT_ENDPOINT,
                connect_timeout=timeout_ms,
                read_timeout=timeout_ms,
            )
        )
        self._runtime = util_models.RuntimeOptions(
            connect_timeout=timeout_ms, read_timeout=timeout_ms
        )
        self._line = line or "default"
        self._record_id = record_id

    @property
    def name(self) -> str:
        return "AliCloud DNS"

    def _call(
        self,
        action: str,
        method: Callable[..., Any],
        request: Any,
        error_cls: Type[RegistrarError],
    ) -> Any:
        try:
            return method(request, self._runtime)
        except TeaException as e:
            raise error_cls(f"{self.name} {action} failed: {e.code} {e.message}") from e
        except (UnretryableException, requests.exceptions.RequestException) as e:
            raise TransportError(f"{self.name} {action} failed: {e}") from e

    def find_records(self, spec: RecordSpec) -> List[RegistrarRecordState]:
        request = alidns_models.DescribeSubDomainRecordsRequest(
            domain_name=spec.zone,
            sub_domain=spec.fqdn,
            type=spec.record_type.value,
        )
        response = self._call(
            "DescribeSubDomainRecords",
            self._client.describe_sub_domain_records_with_options,
            request,
            LookupFailed,
        )
        body = getattr(response, "body", None)
        domain_records = getattr(body, "domain_records", None)
        raw_records = getattr(domain_records, "record", None) or []
        records = [
            RegistrarRecordState(
                record_id=str(r.record_id or ""),
                content=str(r.value or ""),
                name=str(r.rr or ""),
                record_type=str(r.type or ""),
            )
            for r in raw_records
        ]
        if self._record_id:
            records = [r for r in records if r.record_id == self._record_id]
        return records

    def update_record(
        self, spec: RecordSpec, current: RegistrarRecordState, desired: IPAddress
    ) -> None:
        request = alidns_models.UpdateDomainRecordRequest(
            record_id=current.record_id,
            rr="@" if spec.fqdn == spec.domain else spec.name,
            type=spec.record_type.value,
            value=str(desired),
            ttl=spec.ttl,
            line=self._line,
        )
        self._call(
            "UpdateDomainRecord",
            self._client.update_domain_record_with_options,
            request,
            WriteFailed,
        )


# =============================================================================
# Registrar Registry
# =============================================================================


def create_registrar(
    spec: RecordSpec, timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
) -> Registrar:
    """Factory function to create the registrar client for a record."""
    creds = spec.credentials
    if spec.registrar is RegistrarKind.CLOUDFLARE:
        return CloudflareRegistrar(
            api_key=creds.get("api_key", ""),
            email=creds.get("email", ""),
            api_token=creds.get("api_token", ""),
            timeout_seconds=timeout_seconds,
        )
    elif spec.registrar is RegistrarKind.ALIYUN:
        return AliyunRegistrar(
            key_id=creds.get("key_id", ""),
            key_secret=creds.get("key_secret", ""),
            endpoint=creds.get("endpoint", ""),
            line=creds.get("record_line", ""),
            record_id=creds.get("record_id", ""),
            timeout_seconds=timeout_seconds,
        )
    else:
        raise ConfigError(f"Unsupported domain registrar: '{spec.registrar}'")


def registrar_kinds() -> List[str]:
    return [kind.value for kind in RegistrarKind]


def lookup_kind(value: Optional[str]) -> RegistrarKind:
    """Map a configured registrar name to its RegistrarKind."""
    normalized = str(value or "").lower().strip()
    for kind in RegistrarKind:
        if kind.value == normalized:
            return kind
    raise ConfigError(
        f"Unsupported domain registrar: '{value}'. Supported registrars: "
        f"{', '.join(registrar_kinds())}"
    )
