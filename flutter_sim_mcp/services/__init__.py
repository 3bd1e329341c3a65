"""Service layer for sessions, flutter processes and test runs."""

from flutter_sim_mcp.services.flutter_process import FlutterProcessManager
from flutter_sim_mcp.services.log_buffer import LogBuffer
from flutter_sim_mcp.services.session import Session, SessionManager
from flutter_sim_mcp.services.simulator import SimctlController
from flutter_sim_mcp.services.test_runner import FlutterTestManager

__all__ = [
    'FlutterProcessManager',
    'FlutterTestManager',
    'LogBuffer',
    'Session',
    'SessionManager',
    'SimctlController',
]
