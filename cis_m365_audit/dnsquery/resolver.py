"""
Public DNS TXT lookups for SPF and DMARC controls.
"""

from __future__ import annotations

import logging
from typing import Optional

import dns.asyncresolver
import dns.resolver

logger = logging.getLogger("cis_m365_audit.dns")


class TxtResolver:
    """
    Resolves TXT records with dnspython's async resolver.
    A name with no TXT records (NXDOMAIN / no answer) yields an empty list;
    any other DNS failure propagates.
    """

    def __init__(self, nameservers: Optional[list[str]] = None):
        # Explicit nameservers replace the system configuration
        self._resolver = dns.asyncresolver.Resolver(configure=not nameservers)
        if nameservers:
            self._resolver.nameservers = list(nameservers)

    async def txt(self, name: str) -> list[str]:
        try:
            answer = await self._resolver.resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            logger.debug(f"No TXT records for {name}")
            return []

        records = []
        for rdata in answer:
            # Long records are split into 255-byte strings
            records.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
        logger.debug(f"TXT {name}: {records}")
        return records
