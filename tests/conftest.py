from __future__ import annotations

# Fixtures defined under testing/ are registered by importing them here
from testing.relay_server import relay_server
from testing.ssl import localhost_tls
