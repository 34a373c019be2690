"""IP anonymization - zero the host part before anything is stored"""
import ipaddress
import logging
from typing import Optional

logger = logging.getLogger(__name__)

IPV6_KEEP_BITS = 48


class IpAnonymizer:
    """IPv4 loses its last octet, IPv6 its last 80 bits. Idempotent."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def anonymize(self, ip: Optional[str]) -> Optional[str]:
        if ip is None or ip == "":
            return None

        if not self.enabled:
            return ip

        if ":" in ip:
            return self._anonymize_ipv6(ip)
        return self._anonymize_ipv4(ip)

    def _anonymize_ipv4(self, ip: str) -> str:
        parts = ip.split(".")
        if len(parts) != 4:
            return ip
        parts[3] = "0"
        return ".".join(parts)

    def _anonymize_ipv6(self, ip: str) -> str:
        try:
            address = ipaddress.IPv6Address(ip)
        except ValueError:
            logger.debug(f"Leaving unparseable IPv6 address untouched: {ip!r}")
            return ip

        if address.ipv4_mapped is not None:
            return "::ffff:" + self._anonymize_ipv4(str(address.ipv4_mapped))

        network = ipaddress.IPv6Network(f"{address}/{IPV6_KEEP_BITS}", strict=False)
        return str(network.network_address)
