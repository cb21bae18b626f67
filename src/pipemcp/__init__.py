"""pipemcp: tool calls between a host and its helpers over named pipes."""

from pipemcp.version import get_pipemcp_version

__version__ = get_pipemcp_version()

__all__ = ["__version__"]
