"""Best-effort forward resolution of server and partner addresses."""

import ipaddress
import logging
from typing import Any, Callable, Dict, Optional

import dns.exception
import dns.resolver

from ..config_manager import DnsConfig
from ..models.replication_models import ResolvedAddress

logger = logging.getLogger(__name__)

UNRESOLVED = ResolvedAddress()


class DnsAddressResolver:
    """
    Resolves host names to an IPv4 address and canonical host name.

    Resolution is advisory: any failure (NXDOMAIN, timeout, no answer,
    malformed or distinguished-name input) yields an empty ResolvedAddress
    and is never raised to the caller.
    """

    def __init__(
        self,
        config: Optional[DnsConfig] = None,
        resolver_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        """
        Args:
            config: DNS timeout and nameserver settings
            resolver_factory: Optional factory for dns.resolver.Resolver (for testing)
        """
        self.config = config or DnsConfig()
        self._resolver = (resolver_factory or dns.resolver.Resolver)()
        self._resolver.lifetime = self.config.timeout
        if self.config.nameservers:
            self._resolver.nameservers = list(self.config.nameservers)
        self._cache: Dict[str, ResolvedAddress] = {}

    def resolve(self, name: Optional[str]) -> ResolvedAddress:
        if not name or not name.strip():
            return UNRESOLVED
        key = name.strip().rstrip(".").lower()
        cached = self._cache.get(key)
        if cached is None:
            cached = self._lookup(key)
            self._cache[key] = cached
        return cached

    def clear_cache(self) -> None:
        self._cache.clear()

    def _lookup(self, name: str) -> ResolvedAddress:
        # Partners known only by their NTDS settings DN are not resolvable
        if "=" in name or "," in name:
            return UNRESOLVED

        try:
            literal = ipaddress.ip_address(name)
        except ValueError:
            literal = None
        if literal is not None:
            if literal.version == 4:
                return ResolvedAddress(ipv4=str(literal), host_name=str(literal))
            return UNRESOLVED

        try:
            answer = self._resolver.resolve(name, "A")
            ipv4 = next((rdata.address for rdata in answer), None)
            canonical = answer.canonical_name.to_text(omit_final_dot=True)
        except (dns.exception.DNSException, OSError, ValueError) as exc:
            logger.debug(f"Could not resolve {name}: {exc.__class__.__name__}")
            return UNRESOLVED

        if ipv4 is None:
            return UNRESOLVED
        return ResolvedAddress(ipv4=ipv4, host_name=canonical.lower())
