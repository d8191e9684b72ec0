"""Splitting of protocol-prefixed network addresses."""

from __future__ import annotations


def protocol_and_address(listen_addr: str) -> tuple[str, str]:
    """Split ``proto://address`` into its parts; the protocol defaults to tcp."""
    protocol, separator, address = listen_addr.partition("://")
    if not separator:
        return "tcp", listen_addr
    return protocol, address