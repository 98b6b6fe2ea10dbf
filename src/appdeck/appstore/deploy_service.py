import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from appdeck.appstore.compose import (
    container_name_from_compose,
    ensure_volume_ownership,
    extract_compose_meta,
    is_compose_noise,
    sanitize_compose_file,
    select_primary_container,
)
from appdeck.appstore.dependencies import check_app_dependencies
from appdeck.appstore.engine import AppEngine
from appdeck.appstore.environment import EnvironmentBuilder, detect_convention
from appdeck.appstore.errors import AppStoreError, ComposeResolutionError, summarize_failure
from appdeck.appstore.files import pre_seed_data_files
from appdeck.appstore.models import (
    DEFAULT_APP_ICON,
    FALLBACK_APP_NAME,
    AppMeta,
    DeployOptions,
    DeployResult,
    ProgressStatus,
    ResolvedCompose,
    SanitizedCompose,
)
from appdeck.appstore.progress import (
    ProgressReporter,
    ProgressSink,
    is_pull_activity,
    pull_progress,
)
from appdeck.appstore.resolver import ComposeResolver
from appdeck.appstore.validation import validate_app_id, validate_install_config
from appdeck.config.settings import Settings
from appdeck.db.models.apps import ContainerMeta, PersistedInstallConfig, load_json_column
from appdeck.db.repositories.apps import AppRepository, InstalledAppRepository, StoreRepository

logger = logging.getLogger(__name__)


class DeployStage(str, Enum):
    VALIDATING = "validating"
    DEPENDENCY_CHECKING = "dependency-checking"
    RESOLVING_COMPOSE = "resolving-compose"
    SANITIZING = "sanitizing"
    PRE_SEEDING = "pre-seeding"
    PULLING = "pulling"
    STARTING = "starting"
    DETECTING_CONTAINERS = "detecting-containers"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    ERROR = "error"


# Forward-only; any non-terminal stage may also move to ERROR.
TRANSITIONS: Dict[DeployStage, DeployStage] = {
    DeployStage.VALIDATING: DeployStage.DEPENDENCY_CHECKING,
    DeployStage.DEPENDENCY_CHECKING: DeployStage.RESOLVING_COMPOSE,
    DeployStage.RESOLVING_COMPOSE: DeployStage.SANITIZING,
    DeployStage.SANITIZING: DeployStage.PRE_SEEDING,
    DeployStage.PRE_SEEDING: DeployStage.PULLING,
    DeployStage.PULLING: DeployStage.STARTING,
    DeployStage.STARTING: DeployStage.DETECTING_CONTAINERS,
    DeployStage.DETECTING_CONTAINERS: DeployStage.PERSISTING,
    DeployStage.PERSISTING: DeployStage.COMPLETED,
}

TERMINAL_STAGES = {DeployStage.COMPLETED, DeployStage.ERROR}

COMPOSE_NOT_FOUND = (
    "Compose file not found. Provide compose content or ensure the app is in a store."
)


def next_stage(stage: DeployStage) -> DeployStage:
    if stage in TERMINAL_STAGES:
        raise ValueError(f"No transition out of terminal stage '{stage.value}'")
    return TRANSITIONS[stage]


@dataclass
class DeploymentContext:
    options: DeployOptions
    reporter: ProgressReporter
    stage: DeployStage = DeployStage.VALIDATING
    resolved: Optional[ResolvedCompose] = None
    compose: Optional[SanitizedCompose] = None
    env: Dict[str, str] = field(default_factory=dict)
    container_name: str = ""
    primary: Optional[str] = None
    containers: List[str] = field(default_factory=list)
    history: List[DeployStage] = field(default_factory=list)

    @property
    def app_id(self) -> str:
        return self.options.app_id


class DeploymentOrchestrator:
    """Runs one deployment attempt through the ``DeployStage`` pipeline."""

    def __init__(
        self,
        settings: Settings,
        db_manager,
        engine: Optional[AppEngine] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.stores = StoreRepository(db_manager)
        self.apps = AppRepository(db_manager)
        self.installed = InstalledAppRepository(db_manager)
        self.engine = engine or AppEngine(settings)
        self.resolver = ComposeResolver(settings, self.apps, self.installed)
        self.env_builder = EnvironmentBuilder(settings)
        self.sleep = sleep
        self._handlers: Dict[DeployStage, Callable[[DeploymentContext], Awaitable[None]]] = {
            DeployStage.VALIDATING: self._validate,
            DeployStage.DEPENDENCY_CHECKING: self._check_dependencies,
            DeployStage.RESOLVING_COMPOSE: self._resolve_compose,
            DeployStage.SANITIZING: self._sanitize,
            DeployStage.PRE_SEEDING: self._pre_seed,
            DeployStage.PULLING: self._pull,
            DeployStage.STARTING: self._start,
            DeployStage.DETECTING_CONTAINERS: self._detect_containers,
            DeployStage.PERSISTING: self._persist,
        }

    def _display(self, app_id: str, meta: Optional[AppMeta], existing=None, catalog_app=None):
        """Name and icon for an app: request meta, then installed record, then catalog."""
        name = meta.name if meta else None
        icon = meta.icon if meta else None
        if not (name and icon) and app_id:
            if existing is None:
                existing = self.installed.find_latest_by_app_id(app_id)
            if catalog_app is None:
                catalog_app = self.apps.find_latest(app_id)
            name = (
                name
                or (existing.name if existing else None)
                or (catalog_app and (catalog_app.title or catalog_app.name))
            )
            icon = icon or (existing.icon if existing else None) or (
                catalog_app.icon if catalog_app else None
            )
        return name or FALLBACK_APP_NAME, icon or DEFAULT_APP_ICON

    def _reporter(self, options: DeployOptions, sink: Optional[ProgressSink]) -> ProgressReporter:
        name, icon = self._display(options.app_id, options.meta)
        return ProgressReporter(
            sink,
            app_id=options.app_id,
            container_name=self.settings.container_name(options.app_id or ""),
            name=name,
            icon=icon,
            interval=self.settings.pull_progress_interval,
        )

    async def deploy(
        self, options: DeployOptions, sink: Optional[ProgressSink] = None
    ) -> DeployResult:
        ctx = DeploymentContext(options=options, reporter=self._reporter(options, sink))
        logger.info("deploy:start app_id=%s", options.app_id)
        await ctx.reporter.report(0.0, "Starting deployment", ProgressStatus.STARTING)

        stage = DeployStage.VALIDATING
        try:
            while stage not in TERMINAL_STAGES:
                ctx.stage = stage
                ctx.history.append(stage)
                await self._handlers[stage](ctx)
                stage = next_stage(stage)
        except AppStoreError as exc:
            return await self._fail(ctx, exc.stage, exc.message, exc.details)
        except Exception as exc:
            logger.exception("deploy:unexpected app_id=%s stage=%s", ctx.app_id, ctx.stage.value)
            return await self._fail(ctx, ctx.stage.value, str(exc) or "Failed to deploy app", {})

        ctx.stage = DeployStage.COMPLETED
        ctx.history.append(DeployStage.COMPLETED)
        await ctx.reporter.complete("Deployment complete")
        logger.info("deploy:success app_id=%s container=%s", ctx.app_id, ctx.primary)
        return DeployResult(success=True)

    async def _fail(self, ctx: DeploymentContext, tag: str, message: str, details: dict) -> DeployResult:
        failed_at = ctx.stage
        ctx.stage = DeployStage.ERROR
        ctx.history.append(DeployStage.ERROR)
        summary = summarize_failure(tag, message, details)
        logger.error(
            "deploy:error app_id=%s stage=%s tag=%s message=%s details=%s",
            ctx.app_id,
            failed_at.value,
            tag,
            message,
            details,
        )
        await ctx.reporter.fail(f"Deployment failed at {tag}: {summary}")
        return DeployResult(success=False, error=summary)

    # -- stage handlers ---------------------------------------------------

    async def _validate(self, ctx: DeploymentContext):
        validate_app_id(ctx.app_id)
        validate_install_config(ctx.options.config)
        await ctx.reporter.report(0.05, "Validating request")

    async def _check_dependencies(self, ctx: DeploymentContext):
        check_app_dependencies(ctx.app_id, self.apps, self.installed)
        await ctx.reporter.report(0.08, "Dependencies satisfied")

    async def _resolve_compose(self, ctx: DeploymentContext):
        await ctx.reporter.report(0.1, "Resolving compose file")
        resolved = self.resolver.resolve(ctx.options)
        if not resolved:
            raise ComposeResolutionError(COMPOSE_NOT_FOUND)
        ctx.resolved = resolved

        # Fresh content means an edit or redeploy of a running app.
        if ctx.options.compose_content:
            await self.engine.ensure_removed(
                resolved.app_dir, ctx.app_id, self.settings.container_name(ctx.app_id)
            )

    async def _sanitize(self, ctx: DeploymentContext):
        ctx.compose = sanitize_compose_file(ctx.resolved.compose_path)
        logger.info(
            "deploy:sanitized app_id=%s rewritten=%s exec=%s canonical=%s",
            ctx.app_id,
            ctx.compose.sanitized,
            ctx.compose.executable_path,
            ctx.compose.canonical_path,
        )

        store = self.stores.get(ctx.options.store_id) if ctx.options.store_id else None
        convention = detect_convention(
            store.format if store else None,
            ctx.compose.canonical_path,
            ctx.options.store_id,
        )
        logger.info("deploy:convention app_id=%s convention=%s", ctx.app_id, convention)

        ctx.env = self.env_builder.build(ctx.app_id, ctx.options.config, convention)
        ctx.container_name = (
            container_name_from_compose(ctx.compose.canonical_path)
            or self.settings.container_name(ctx.app_id)
        )
        ctx.env["CONTAINER_NAME"] = ctx.container_name
        await ctx.reporter.report(0.15, "Configuring deployment")

    async def _pre_seed(self, ctx: DeploymentContext):
        pre_seed_data_files(ctx.resolved.app_dir, ctx.env["APP_DATA_DIR"])
        ensure_volume_ownership(ctx.compose.executable_path, ctx.env, ctx.app_id)
        await ctx.reporter.report(0.2, "Pre-seeding complete")

    async def _pull(self, ctx: DeploymentContext):
        await ctx.reporter.report(0.35, "Pulling images")
        events = 0

        async def on_line(line: str, is_stderr: bool):
            nonlocal events
            if not is_pull_activity(line, is_stderr):
                return
            events += 1
            await ctx.reporter.report(pull_progress(events), "Pulling images", throttle=True)

        await self.engine.compose.pull(
            ctx.resolved.app_dir,
            ctx.app_id,
            ctx.compose.executable_path,
            ctx.env,
            on_line,
        )
        logger.info("deploy:pulled app_id=%s events=%s", ctx.app_id, events)

    async def _start(self, ctx: DeploymentContext):
        await ctx.reporter.report(0.85, "Starting services")
        result = await self.engine.compose.up(
            ctx.resolved.app_dir, ctx.app_id, ctx.compose.executable_path, ctx.env
        )
        if result.stdout.strip():
            logger.info("deploy:up:stdout app_id=%s output=%s", ctx.app_id, result.stdout[:200])
        if result.stderr.strip() and not is_compose_noise(result.stderr):
            logger.warning("deploy:up:stderr app_id=%s output=%s", ctx.app_id, result.stderr[:2000])

    async def _detect_containers(self, ctx: DeploymentContext):
        await ctx.reporter.report(0.9, "Finalizing deployment")
        names: List[str] = []
        attempts = max(1, self.settings.detect_attempts)
        for attempt in range(attempts):
            names = await self.engine.compose.ps_names(
                ctx.resolved.app_dir, ctx.app_id, ctx.compose.executable_path
            )
            if names:
                break
            if attempt < attempts - 1:
                await self.sleep(self.settings.detect_delay)

        ctx.primary = select_primary_container(names) or ctx.container_name
        ctx.containers = names or [ctx.primary]
        ctx.reporter.container_name = ctx.primary
        logger.info(
            "deploy:detected app_id=%s primary=%s containers=%s",
            ctx.app_id,
            ctx.primary,
            ",".join(ctx.containers),
        )

    async def _persist(self, ctx: DeploymentContext):
        options = ctx.options
        config = options.config
        meta = extract_compose_meta(ctx.compose.executable_path)
        existing = self.installed.find_latest_by_app_id(ctx.app_id)
        catalog_app = self.apps.find_latest(ctx.app_id)

        persisted = PersistedInstallConfig(
            ports=config.ports if config else [],
            volumes=config.volumes if config else [],
            environment=config.environment if config else [],
            web_ui_port=(config.web_ui_port if config else None) or meta["web_ui_port"],
            network_mode=(config.network_mode if config else None) or meta["network_mode"],
            compose_path=ctx.compose.canonical_path,
            deploy_method="compose",
            containers=ctx.containers,
        )

        store_id = (
            options.store_id
            or (existing.store_id if existing else None)
            or (catalog_app.store_id if catalog_app else None)
        )
        container_meta = (
            load_json_column(options.container_meta, ContainerMeta)
            if options.container_meta
            else None
        )
        if container_meta is None:
            container_meta = (existing.container if existing else None) or (
                catalog_app.container if catalog_app else None
            )

        name, icon = self._display(ctx.app_id, options.meta, existing, catalog_app)

        self.installed.upsert(
            app_id=ctx.app_id,
            container_name=ctx.primary,
            name=name,
            icon=icon,
            install_config=persisted,
            store_id=store_id,
            container=container_meta,
            version=catalog_app.version if catalog_app else None,
        )
        logger.info("deploy:persisted app_id=%s container=%s", ctx.app_id, ctx.primary)
        await ctx.reporter.report(0.95, "Saving installation")
