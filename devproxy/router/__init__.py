"""Per-connection request path: forwarding, upgrade tunnels and the control app."""
