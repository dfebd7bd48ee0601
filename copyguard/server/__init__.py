"""
CopyGuard Server - HTTP surface for the compliance gate and approval workflow.

Run with:
    copyguard-server             # CLI entry point
    python -m copyguard.server   # Module entry point

Or programmatically:
    from copyguard.server import CopyGuardServer
    server = CopyGuardServer(port=8000)
    server.run()
"""

from .app import CopyGuardServer, create_app
from .config import ServerConfig

__all__ = [
    "create_app",
    "CopyGuardServer",
    "ServerConfig",
]
