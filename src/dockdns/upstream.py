"""Upstream delegation over DNS-over-HTTPS."""

from __future__ import annotations

import logging
import random
from typing import Callable, List, Optional, Sequence

from dnslib import QTYPE, RR, DNSHeader, DNSQuestion, DNSRecord
from dnslib.dns import DNSError

from .servers.transports.doh import DoHError, b64url_no_pad, doh_query

logger = logging.getLogger("dockdns.upstream")


class UpstreamError(Exception):
    """
    Brief: A delegated question could not be answered by the upstream.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


class UpstreamResolver:
    """Forward single questions to a pool of public DoH resolvers.

    Each forward() makes exactly one attempt against one endpoint chosen
    uniformly at random; listing an endpoint several times weights it.

    Example use:
        >>> up = UpstreamResolver(["223.5.5.5", "223.6.6.6"], timeout_ms=1500)
        >>> up.build_url("223.5.5.5", b"\\x00\\x01")
        'https://223.5.5.5/dns-query?dns=AAE'
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout_ms: int = 2000,
        *,
        verify: bool = True,
        ca_file: Optional[str] = None,
        choose: Callable[[Sequence[str]], str] = random.choice,
        transport: Callable = doh_query,
    ) -> None:
        if not endpoints:
            raise ValueError("at least one upstream endpoint is required")
        self.endpoints = tuple(endpoints)
        self.timeout_ms = int(timeout_ms)
        self.verify = bool(verify)
        self.ca_file = ca_file
        self._choose = choose
        self._transport = transport

    def pick_endpoint(self) -> str:
        return self._choose(self.endpoints)

    @staticmethod
    def build_url(endpoint: str, wire: bytes) -> str:
        """Brief: Compose the RFC 8484 GET URL for one query message.

        Inputs:
          - endpoint: Host or IP of the resolver.
          - wire: Packed DNS query.

        Outputs:
          - str: https://{endpoint}/dns-query?dns={unpadded base64url}
        """

        return f"https://{endpoint}/dns-query?dns={b64url_no_pad(wire)}"

    @staticmethod
    def build_query(question: DNSQuestion) -> DNSRecord:
        """Brief: Wrap one question in a fresh recursive query message.

        Inputs:
          - question: The question to delegate, copied verbatim.

        Outputs:
          - DNSRecord with a new random id, RD set and a single question.
        """

        return DNSRecord(
            DNSHeader(),
            q=DNSQuestion(question.qname, question.qtype, question.qclass),
        )

    def forward(self, question: DNSQuestion) -> List[RR]:
        """Brief: Resolve one question upstream and return its answer section.

        Inputs:
          - question: dnslib DNSQuestion from the client's message.

        Outputs:
          - List[RR]: Answer records exactly as the upstream returned them.

        Raises:
          - UpstreamError: On transport, HTTP status or decode failures.
        """

        query = self.build_query(question)
        wire = query.pack()
        endpoint = self.pick_endpoint()
        url = self.build_url(endpoint, wire)
        logger.debug(
            "Forwarding %s %s to %s",
            question.qname,
            QTYPE.get(question.qtype, str(question.qtype)),
            endpoint,
        )

        try:
            body, _headers = self._transport(
                url,
                wire,
                method="GET",
                timeout_ms=self.timeout_ms,
                verify=self.verify,
                ca_file=self.ca_file,
            )
        except DoHError as e:
            raise UpstreamError(f"{endpoint}: {e}") from e

        try:
            response = DNSRecord.parse(body)
        except DNSError as e:
            raise UpstreamError(f"{endpoint}: undecodable response: {e}") from e

        return list(response.rr)
