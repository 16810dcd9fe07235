"""Query resolution engine.

Brief:
  For the first question of each QUERY message the engine picks one of three
  strategies, in order:
    1. workload: the name is a running container's id, id prefix (>= 12
       characters) or name -> answer with the master address.
    2. local_client: the name is in the local-client allowlist -> answer with
       the caller's own address.
    3. delegate: forward the question verbatim to the DoH upstream and copy
       its answer section.
  Only A and AAAA questions are eligible for 1 and 2; everything else is
  delegated. Only the first question of a message is ever answered.

Inputs:
  - Wire-format DNS messages and the caller's transport address.

Outputs:
  - Wire-format DNS replies.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from dnslib import AAAA, OPCODE, QTYPE, RR, A, DNSHeader, DNSQuestion, DNSRecord
from dnslib.dns import DNSError

from .allowlist import LocalClientAllowlist
from .upstream import UpstreamError, UpstreamResolver
from .workloads import DirectoryError, DockerDirectory, WorkloadRecord

logger = logging.getLogger("dockdns.resolver")

ADDRESS_QTYPES = (QTYPE.A, QTYPE.AAAA)

WORKLOAD = "workload"
LOCAL_CLIENT = "local_client"
DELEGATE = "delegate"

DEFAULT_ANSWER_TTL = 3600

ClientAddress = Union[Tuple, str]


@dataclass(frozen=True)
class ResolutionDecision:
    """
    Brief: Outcome of classifying one question.

    Inputs:
      - kind: WORKLOAD, LOCAL_CLIENT or DELEGATE.
      - address: Address to bind in the synthesized answer (None for DELEGATE).
      - workload: The matched workload for WORKLOAD decisions.

    Outputs:
      - ResolutionDecision instance.
    """

    kind: str
    address: Optional[str] = None
    workload: Optional[WorkloadRecord] = None


_DELEGATE = ResolutionDecision(kind=DELEGATE)


def normalize_name(qname) -> str:
    """Brief: Comparison form of a query name.

    Inputs:
      - qname: dnslib DNSLabel or str, e.g. "Web." or "web".

    Outputs:
      - str: Lowercased name with exactly one trailing dot removed.

    Example:
      >>> normalize_name("Web.")
      'web'
      >>> normalize_name(".")
      ''
    """

    name = str(qname)
    if name.endswith("."):
        name = name[:-1]
    return name.lower()


def caller_host(client_address: ClientAddress) -> str:
    """Brief: Extract the caller's IP from a transport address.

    Inputs:
      - client_address: socketserver-style (host, port[, flow, scope]) tuple,
        or a "host:port" / "[v6]:port" string.

    Outputs:
      - str: Host part without IPv6 brackets.

    Example:
      >>> caller_host(("10.0.0.5", 5353))
      '10.0.0.5'
      >>> caller_host("[2001:db8::1]:5353")
      '2001:db8::1'
    """

    if isinstance(client_address, tuple):
        host = str(client_address[0])
    else:
        text = str(client_address)
        if text.startswith("["):
            host = text[1:].split("]", 1)[0]
        elif text.count(":") == 1:
            host = text.split(":", 1)[0]
        else:
            host = text
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host


def make_address_rr(qname, qtype: int, address: str, ttl: int) -> RR:
    """Brief: Build an A/AAAA answer binding qname to address.

    Inputs:
      - qname: Owner name, echoed from the question.
      - qtype: QTYPE.A or QTYPE.AAAA.
      - address: IP address text.
      - ttl: Answer TTL in seconds.

    Outputs:
      - RR.

    Raises:
      - ValueError: When address is not an IP of the family qtype requires.
    """

    ip = ipaddress.ip_address(address)
    if qtype == QTYPE.A and ip.version == 4:
        rdata = A(str(ip))
    elif qtype == QTYPE.AAAA and ip.version == 6:
        rdata = AAAA(str(ip))
    else:
        raise ValueError(
            f"{address} cannot answer a {QTYPE.get(qtype, str(qtype))} question"
        )
    return RR(rname=qname, rtype=qtype, rclass=1, ttl=int(ttl), rdata=rdata)


class QueryResolver:
    """Decide how each incoming question is answered and build the reply.

    All collaborators are injected; the instance holds no mutable state, so one
    resolver is shared by every handler thread.

    Example use:
        >>> resolver = QueryResolver(directory, allowlist, upstream, "10.0.0.1")
        >>> wire = resolver.resolve_query_bytes(data, ("192.0.2.7", 40000))
    """

    def __init__(
        self,
        directory: DockerDirectory,
        allowlist: LocalClientAllowlist,
        upstream: UpstreamResolver,
        master_address: str,
        ttl: int = DEFAULT_ANSWER_TTL,
    ) -> None:
        self.directory = directory
        self.allowlist = allowlist
        self.upstream = upstream
        self.master_address = master_address
        self.ttl = int(ttl)

    def _find_workload(self, name: str) -> Optional[WorkloadRecord]:
        try:
            return self.directory.find_workload(name)
        except DirectoryError as e:
            # Runtime trouble only costs the workload rule for this query.
            logger.warning("Workload lookup for %s failed: %s", name, e)
            return None

    def classify(
        self, question: DNSQuestion, client_address: ClientAddress
    ) -> ResolutionDecision:
        """Brief: Choose the resolution strategy for one question.

        Inputs:
          - question: dnslib DNSQuestion.
          - client_address: Caller's transport address.

        Outputs:
          - ResolutionDecision.
        """

        name = normalize_name(question.qname)
        if not name or question.qtype not in ADDRESS_QTYPES:
            return _DELEGATE

        workload = self._find_workload(name)
        if workload is not None:
            return ResolutionDecision(
                kind=WORKLOAD, address=self.master_address, workload=workload
            )

        if self.allowlist.is_local_client(str(question.qname)):
            return ResolutionDecision(
                kind=LOCAL_CLIENT, address=caller_host(client_address)
            )

        return _DELEGATE

    def _synthesize(
        self, question: DNSQuestion, decision: ResolutionDecision
    ) -> Optional[RR]:
        try:
            return make_address_rr(
                question.qname, question.qtype, decision.address, self.ttl
            )
        except ValueError as e:
            logger.warning(
                "Cannot build %s answer for %s: %s; delegating instead",
                decision.kind,
                question.qname,
                e,
            )
            return None

    def _delegate(self, question: DNSQuestion) -> List[RR]:
        try:
            return self.upstream.forward(question)
        except UpstreamError as e:
            logger.warning("Upstream lookup for %s failed: %s", question.qname, e)
            return []

    def resolve(
        self, question: DNSQuestion, client_address: ClientAddress
    ) -> List[RR]:
        """Brief: Produce the answer records for one question.

        Inputs:
          - question: dnslib DNSQuestion.
          - client_address: Caller's transport address.

        Outputs:
          - List[RR]: One synthesized record for local matches, the upstream's
            answer section when delegated, or [] when delegation fails.

        Notes:
          - A local match whose answer cannot be built (e.g. an IPv4 master
            address for an AAAA question) is logged and delegated.
        """

        qtype_name = QTYPE.get(question.qtype, str(question.qtype))
        logger.debug("Query %s %s from %s", question.qname, qtype_name, client_address)

        decision = self.classify(question, client_address)
        if decision.kind != DELEGATE:
            rr = self._synthesize(question, decision)
            if rr is not None:
                logger.info(
                    "%s match %s %s -> %s",
                    decision.kind,
                    question.qname,
                    qtype_name,
                    decision.address,
                )
                return [rr]

        return self._delegate(question)

    def handle_request(
        self, request: DNSRecord, client_address: ClientAddress
    ) -> DNSRecord:
        """Brief: Build the reply message for a parsed request.

        Inputs:
          - request: Parsed DNSRecord.
          - client_address: Caller's transport address.

        Outputs:
          - DNSRecord reply echoing id, opcode, RD and the first question.

        Notes:
          - Non-QUERY opcodes get an empty NOERROR reply.
          - Only the first question is resolved; any further questions are
            neither echoed nor answered.
        """

        header = request.header
        reply = DNSRecord(
            DNSHeader(id=header.id, qr=1, opcode=header.opcode, rd=header.rd, ra=1),
            questions=list(request.questions[:1]),
        )

        if header.opcode != OPCODE.QUERY or not request.questions:
            return reply

        for rr in self.resolve(request.questions[0], client_address):
            reply.add_answer(rr)
        return reply

    def resolve_query_bytes(
        self, data: bytes, client_address: ClientAddress
    ) -> Optional[bytes]:
        """Brief: Wire-in, wire-out entry point used by the UDP handler.

        Inputs:
          - data: Wire-format DNS message.
          - client_address: Caller's transport address.

        Outputs:
          - bytes reply, or None when data is not a DNS message (no reply is
            sent for those).
        """

        try:
            request = DNSRecord.parse(data)
        except DNSError as e:
            logger.debug("Dropping unparseable datagram from %s: %s", client_address, e)
            return None
        return self.handle_request(request, client_address).pack()
