import logging
import socket
import socketserver
from typing import Optional

from dnslib import RCODE, DNSRecord
from dnslib.dns import DNSError

from ..resolver import QueryResolver

logger = logging.getLogger("dockdns.server")


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles one UDP DNS datagram.

    socketserver instantiates this class per datagram, in its own thread, so a
    slow upstream round trip for one client never blocks another.

    Example use:
        Installed by DNSServer; not instantiated directly.
    """

    resolver: Optional[QueryResolver] = None

    def _servfail(self, data: bytes) -> Optional[bytes]:
        try:
            request = DNSRecord.parse(data)
        except DNSError:
            return None
        reply = request.reply()
        reply.header.rcode = RCODE.SERVFAIL
        return reply.pack()

    def handle(self):
        """Resolve the datagram and send exactly one reply, if any.

        Inputs:
          - None (socketserver supplies self.request and self.client_address).
        Outputs:
          - None; unparseable datagrams get no reply.
        """
        data, sock = self.request

        try:
            wire = self.resolver.resolve_query_bytes(data, self.client_address)
        except Exception:
            logger.exception("Unhandled error resolving query from %s", self.client_address)
            wire = self._servfail(data)

        if not wire:
            return
        try:
            sock.sendto(wire, self.client_address)
        except OSError as e:
            logger.warning("Failed to send reply to %s: %s", self.client_address, e)


class _ThreadingUDPServer(socketserver.ThreadingUDPServer):
    """ThreadingUDPServer that picks its address family from the bind host."""

    def __init__(self, server_address, handler_cls):
        if ":" in str(server_address[0]):
            self.address_family = socket.AF_INET6
        super().__init__(server_address, handler_cls)


class DNSServer:
    """A threaded UDP DNS server bound to one QueryResolver.

    Example use:
        >>> import threading
        >>> server = DNSServer("127.0.0.1", 5355, resolver)
        >>> threading.Thread(target=server.serve_forever, daemon=True).start()
        >>> server.stop()
    """

    def __init__(self, host: str, port: int, resolver: QueryResolver) -> None:
        """Bind the listening socket.

        Inputs:
            host: Address to listen on.
            port: UDP port (53 by default in the CLI).
            resolver: Shared QueryResolver used by every handler thread.

        Raises:
            OSError: When the socket cannot be bound; the caller treats this
            as fatal.
        """
        handler_cls = type(
            "BoundDNSUDPHandler", (DNSUDPHandler,), {"resolver": resolver}
        )
        try:
            self.server = _ThreadingUDPServer((host, port), handler_cls)
        except PermissionError as e:
            logger.error(
                "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                host,
                port,
                e,
            )
            raise

        # Handler threads must not block shutdown
        self.server.daemon_threads = True
        logger.debug("DNS UDP server bound to %s:%d", host, port)

    @property
    def server_address(self):
        return self.server.server_address

    def serve_forever(self) -> None:
        """Run the receive loop until stop() is called or KeyboardInterrupt."""
        try:
            self.server.serve_forever()
        except KeyboardInterrupt:
            pass

    def stop(self) -> None:
        """Stop the receive loop and close the socket.

        Safe to call from a thread other than the one running serve_forever().
        """
        try:
            self.server.shutdown()
        finally:
            self.server.server_close()
