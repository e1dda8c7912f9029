"""
dockpilot - An async client core for a local Docker engine.

This package holds everything a container dashboard needs between the
screen and the engine: a typed async facade over docker-py, a snapshot
cache, per-view polling timers, container templates, a guided
provisioning flow and multi-service compose deployment.

Features:
  - Async engine facade with tagged results (no exceptions cross it)
  - Stale-on-error snapshot cache for containers, images, volumes, networks
  - One refresh timer per mounted view, suspended while disconnected
  - Template catalogue with persisted user templates (import/export)
  - Pull-if-missing provisioning with explicit phases
  - Best-effort compose deployment with per-service results

Main Components:
  - engine.py: docker-py wrapper (EngineClient, EngineResult)
  - cache.py: ResourceCache and Snapshot
  - scheduler.py: SyncScheduler and ScopeKey
  - provisioning.py: ProvisioningWorkflow
  - deploy.py / compose.py: DeploymentOrchestrator and compose parsing
  - actions.py: ActionDispatcher
  - views.py: ViewCoordinator (view, overlay and selection state)
  - templates.py: Template catalogue and TemplateStore
  - config.py: YAML configuration

Usage:
  python -m dockpilot ps -a

Dependencies:
  - docker>=7.0.0
  - PyYAML>=6.0
  - Python 3.10+
"""

import os
import tempfile
from pathlib import Path

__version__ = "0.1.0"


def get_config_dir() -> Path:
    """Return XDG_CONFIG_HOME/dockpilot (default ~/.config/dockpilot)."""
    xdg_config_home = os.environ.get('XDG_CONFIG_HOME')
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / '.config'
    return base / 'dockpilot'


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/dockpilot/logs/dockpilot.log with fallback to the
    system temp directory. Creates the directory if it doesn't exist.
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'dockpilot' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'dockpilot.log')
    except (PermissionError, OSError):
        return os.path.join(tempfile.gettempdir(), 'dockpilot.log')
