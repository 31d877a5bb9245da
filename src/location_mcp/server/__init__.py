from location_mcp.server.app import create_app
from location_mcp.server.auth import RequestAuthenticator
from location_mcp.server.capabilities import CapabilitySet
from location_mcp.server.lowlevel import LowLevelServer
from location_mcp.server.manager import MCPSessionManager
from location_mcp.server.session import NoEvictionPolicy, Session, SessionStore
from location_mcp.server.transport import HTTPTransport, TransportRequest, TransportResponse

__all__ = [
    "CapabilitySet",
    "HTTPTransport",
    "LowLevelServer",
    "MCPSessionManager",
    "NoEvictionPolicy",
    "RequestAuthenticator",
    "Session",
    "SessionStore",
    "TransportRequest",
    "TransportResponse",
    "create_app",
]
