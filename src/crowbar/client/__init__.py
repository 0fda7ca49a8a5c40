"""Client side of the HTTP tunnel."""

from crowbar.client.tunnel import Forwarder, TunnelClient, TunnelSession

__all__ = ["Forwarder", "TunnelClient", "TunnelSession"]
