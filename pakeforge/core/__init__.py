"""Core package containing the essential managers and components."""

from pakeforge.core.app import ApplicationCore
from pakeforge.core.base import PakeForgeManager
from pakeforge.core.build_orchestrator import BuildOrchestrator, BuildSession, BuildStatus
from pakeforge.core.config_manager import AppSettings, ConfigManager
from pakeforge.core.environment import EnvironmentChecker, ToolState, ToolStatus
from pakeforge.core.event_bus_manager import EventBusManager
from pakeforge.core.logging_manager import LoggingManager
from pakeforge.core.project_store import ProjectStore
