"""
View coordination.

ViewCoordinator owns everything a front end needs to decide what to show:
the current view, the selected container, overlay flags, banners, the
template being provisioned and the last compose deployment. It is also the
only place that talks to the scheduler, so "which timers run" always follows
"which view is visible":

  - navigating mounts the new view's scope and unmounts the old one
  - changing the show-all flag or the log tail re-scopes the running timer
  - the templates view has no engine data and runs no timer

Every state change bumps `version`, so renderers can skip redraws when
nothing changed.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .actions import ActionDispatcher, ActionOutcome, ConfirmFn, LifecycleAction
from .cache import ResourceCache, ResourceKind
from .config import AppConfig, ConfigManager
from .deploy import DeploymentOrchestrator, DeploymentReport, StartReport
from .engine import EngineResult
from .errors import ValidationError
from .model import ContainerSpec
from .provisioning import ProvisioningSession, ProvisioningWorkflow
from .scheduler import ScopeKey, SyncScheduler
from .templates import Template
from .validation import validate_image_name

logger = logging.getLogger(__name__)


class View(str, Enum):
    LIST = "list"
    DETAILS = "details"
    LOGS = "logs"
    IMAGES = "images"
    VOLUMES = "volumes"
    NETWORKS = "networks"
    TEMPLATES = "templates"


@dataclass
class Overlays:
    pull_image: bool = False
    create_container: bool = False
    compose_upload: bool = False
    provisioning: bool = False


class ViewCoordinator:
    def __init__(self, engine, config_manager: Optional[ConfigManager] = None,
                 cache: Optional[ResourceCache] = None,
                 scheduler: Optional[SyncScheduler] = None):
        self.engine = engine
        self.config_manager = config_manager
        self.config: AppConfig = config_manager.get_config() if config_manager else AppConfig()
        self.cache = cache or ResourceCache(engine)
        self.scheduler = scheduler or SyncScheduler(
            engine, self.cache, interval=self.config.sync.refresh_interval)
        self.scheduler.on_error = self._on_refresh_error
        self.scheduler.on_refresh = self._on_refreshed
        self.dispatcher = ActionDispatcher(engine, self.cache, coordinator=self)
        self.orchestrator = DeploymentOrchestrator(engine)

        self.current_view = View.LIST
        self.selected_container: Optional[str] = None
        self.show_all = self.config.ui.show_all
        self.log_tail = self.config.ui.log_tail
        self.overlays = Overlays()
        self.selected_template: Optional[Template] = None
        self.provisioning: Optional[ProvisioningWorkflow] = None
        self.last_deployment: Optional[DeploymentReport] = None
        self.error: Optional[str] = None
        self._error_scope: Optional[ScopeKey] = None
        self.message: str = ""
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    @property
    def connected(self) -> bool:
        return self.scheduler.connected

    @property
    def dark_mode(self) -> bool:
        return self.config.ui.dark_mode

    def _touch(self) -> None:
        self._version += 1

    # --- connection ---

    async def start(self) -> bool:
        """Mount the initial view and probe the engine."""
        scope = self.current_scope()
        if scope is not None:
            self.scheduler.mount(scope)
        connected = await self.scheduler.connect()
        if connected:
            self.clear_error()
        self._touch()
        return connected

    async def retry_connection(self) -> bool:
        connected = await self.scheduler.retry_connection()
        if connected:
            self.clear_error()
        self._touch()
        return connected

    async def shutdown(self) -> None:
        if self.provisioning is not None:
            self.provisioning.dismiss()
        await self.scheduler.shutdown()

    # --- navigation ---

    def current_scope(self) -> Optional[ScopeKey]:
        view = self.current_view
        if view is View.LIST:
            return ScopeKey.containers(self.show_all)
        if view is View.DETAILS and self.selected_container:
            return ScopeKey.details(self.selected_container)
        if view is View.LOGS and self.selected_container:
            return ScopeKey.logs(self.selected_container, self.log_tail)
        if view is View.IMAGES:
            return ScopeKey.images()
        if view is View.VOLUMES:
            return ScopeKey.volumes()
        if view is View.NETWORKS:
            return ScopeKey.networks()
        return None

    def _switch(self, update) -> None:
        old = self.current_scope()
        update()
        self.scheduler.rescope(old, self.current_scope())
        self._touch()

    def navigate(self, view: View) -> None:
        view = View(view)

        def update():
            self.current_view = view
        self._switch(update)

    async def open_details(self, container_id: str) -> bool:
        """Load the detail first; only switch view when it could be read."""
        result = await self.cache.refresh(ResourceKind.CONTAINER_DETAIL, container_id)
        if not result.ok:
            self.report_error(result.error)
            return False

        def update():
            self.selected_container = container_id
            self.current_view = View.DETAILS
        self._switch(update)
        return True

    def open_logs(self, container_id: str) -> None:
        def update():
            self.selected_container = container_id
            self.current_view = View.LOGS
        self._switch(update)

    def back_to_list(self) -> None:
        def update():
            self.selected_container = None
            self.current_view = View.LIST
        self._switch(update)

    def set_show_all(self, show_all: bool) -> None:
        def update():
            self.show_all = show_all
        self._switch(update)
        if self.config_manager is not None:
            self.config.ui.show_all = show_all
            self.config_manager.save_config()

    def set_log_tail(self, tail: str) -> None:
        tail = str(tail).strip().lower()
        if tail != "all" and not tail.isdigit():
            raise ValidationError(f"Invalid log tail '{tail}'", hint="Use a line count or 'all'")

        def update():
            self.log_tail = tail
        self._switch(update)

    # --- banners ---

    def report_error(self, message: Optional[str]) -> None:
        self.error = message
        self._error_scope = None
        self._touch()

    def clear_error(self) -> None:
        self._error_scope = None
        if self.error is not None:
            self.error = None
            self._touch()

    def set_message(self, message: str) -> None:
        self.message = message
        self._touch()

    def _on_refresh_error(self, scope: Optional[ScopeKey], message: str) -> None:
        self.report_error(message)
        self._error_scope = scope

    def _on_refreshed(self, scope: ScopeKey) -> None:
        # Only a banner raised by this scope's own refresh is cleared here.
        if self.error is not None and scope is not None and self._error_scope == scope:
            self.clear_error()

    def toggle_dark_mode(self) -> bool:
        if self.config_manager is not None:
            enabled = self.config_manager.toggle_dark_mode()
        else:
            self.config.ui.dark_mode = not self.config.ui.dark_mode
            enabled = self.config.ui.dark_mode
        self._touch()
        return enabled

    # --- container actions ---

    async def apply_action(self, action: LifecycleAction, container_id: str,
                           confirm_fn: Optional[ConfirmFn] = None) -> ActionOutcome:
        return await self.dispatcher.apply(action, container_id, confirm_fn)

    def on_container_removed(self, container_id: str) -> None:
        if self.selected_container == container_id or self.current_view in (View.DETAILS, View.LOGS):
            self.back_to_list()

    # --- templates and creation ---

    async def use_template(self, template: Template) -> ProvisioningSession:
        if self.provisioning is not None:
            self.close_provisioning()
        workflow = ProvisioningWorkflow(
            self.engine, template,
            on_transition=self._on_provisioning,
            handoff=self._handoff,
            pacing_delay=self.config.sync.pacing_delay,
        )
        self.provisioning = workflow
        self.overlays.provisioning = True
        self._touch()
        session = await workflow.run()
        if self.provisioning is workflow:
            self.provisioning = None
            self.overlays.provisioning = False
            self._touch()
        return session

    def close_provisioning(self) -> None:
        if self.provisioning is not None:
            self.provisioning.dismiss()
            self.provisioning = None
        self.overlays.provisioning = False
        self._touch()

    def _on_provisioning(self, session: ProvisioningSession) -> None:
        self.message = session.message
        if session.error:
            self.error = session.error
        self._touch()

    def _handoff(self, template: Template) -> None:
        self.overlays.provisioning = False
        self.open_create_form(template)

    def open_create_form(self, template: Optional[Template] = None) -> None:
        self.selected_template = template
        self.overlays.create_container = True
        self._touch()

    def close_create_form(self) -> None:
        self.selected_template = None
        self.overlays.create_container = False
        self._touch()

    async def submit_create(self, spec: ContainerSpec) -> EngineResult:
        """Create (and start, when the form came from a template) a container."""
        try:
            spec.validate()
        except ValidationError as e:
            self.report_error(e.message)
            return EngineResult.failure(e.message)

        if self.selected_template is not None:
            result = await self.engine.create_and_start_container(spec)
        else:
            result = await self.engine.create_container(spec)
        if not result.ok:
            self.report_error(result.error)
            return result

        self.close_create_form()
        self.set_message(f"Container {result.value[:12]} created")
        await self.cache.refresh(ResourceKind.CONTAINERS, self.show_all)
        return result

    # --- images ---

    def open_pull_image(self) -> None:
        self.overlays.pull_image = True
        self._touch()

    def close_pull_image(self) -> None:
        self.overlays.pull_image = False
        self._touch()

    async def pull_image(self, image: str) -> EngineResult:
        try:
            image = validate_image_name(image)
        except ValidationError as e:
            self.report_error(e.message)
            return EngineResult.failure(e.message)
        result = await self.engine.pull_image(image)
        if not result.ok:
            self.report_error(result.error)
            return result
        self.close_pull_image()
        self.set_message(f"Successfully pulled {image}")
        await self.cache.refresh(ResourceKind.IMAGES)
        return result

    # --- compose ---

    def open_compose_upload(self) -> None:
        self.overlays.compose_upload = True
        self._touch()

    def close_compose_upload(self) -> None:
        self.overlays.compose_upload = False
        self._touch()

    async def deploy_compose(self, spec_text: str) -> Optional[DeploymentReport]:
        try:
            report = await self.orchestrator.deploy(spec_text)
        except ValidationError as e:
            self.report_error(e.message)
            return None
        self.last_deployment = report
        self.set_message(report.summary())
        await self.cache.refresh(ResourceKind.CONTAINERS, self.show_all)
        return report

    async def start_all_deployed(self) -> Optional[StartReport]:
        if self.last_deployment is None:
            self.report_error("Nothing deployed yet")
            return None
        started = await self.orchestrator.start_all(self.last_deployment)
        self.set_message(f"Started {started.started} of {len(started.outcomes)} containers")
        await self.cache.refresh(ResourceKind.CONTAINERS, self.show_all)
        return started
