"""Data model shared by the resolver, registrars and workers."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Placeholder substituted with the resolved address in on-update commands.
IP_ADDRESS_PLACEHOLDER = "${IP_ADDRESS}"

# =============================================================================
# Enums
# =============================================================================


class RecordType(Enum):
    """DNS address record types kept in sync."""

    A = "A"
    AAAA = "AAAA"

    @property
    def ip_version(self) -> int:
        return 4 if self is RecordType.A else 6


class RegistrarKind(Enum):
    """Supported DNS registrars."""

    CLOUDFLARE = "cloudflare"
    ALIYUN = "aliyun"


class ReconcileOutcome(Enum):
    """Result of a successful reconciliation attempt."""

    UNCHANGED = "unchanged"
    UPDATED = "updated"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class RecordSpec:
    """One DNS record to keep synchronized with the host address.

    zone is the provider's zone identifier: the Cloudflare zone id, or the
    domain name for AliCloud DNS. name is the sub-domain label ("@" for the
    apex) and domain the apex domain it lives under.
    """

    registrar: RegistrarKind
    zone: str
    domain: str
    name: str
    record_type: RecordType
    ip_address_from_cmd: str
    ttl: int = 600
    proxied: bool = False
    ip_address_on_update_cmd: Optional[str] = None
    credentials: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    @property
    def fqdn(self) -> str:
        if self.name in ("", "@") or self.name == self.domain:
            return self.domain
        return f"{self.name}.{self.domain}"


@dataclass(frozen=True)
class RegistrarRecordState:
    """The registrar's current authoritative value for a record."""

    record_id: str
    content: str
    name: str = ""
    record_type: str = ""
