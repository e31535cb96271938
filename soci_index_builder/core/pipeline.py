"""Invocation pipeline: the central coordinator for one ECR push event.

Wires the validator, registry session, workspace manager, deadline watchdog,
local stores and index build orchestrator into a single sequential run:

    validate -> registry init -> idempotency gate -> strategy gate
        -> acquire workspace (+ watchdog) -> storage init -> pull
        -> build -> push -> release workspace -> cancel watchdog

Every path ends in exactly one ``Outcome``. Stage errors are logged once,
by the reporter, with the stage's fixed message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from soci_index_builder.build.builder import (
    BuildEnvironment,
    BuilderFactory,
    IndexBuilder,
    load_builder_factory,
)
from soci_index_builder.build.orchestrator import IndexBuildOrchestrator
from soci_index_builder.config import BuilderSettings
from soci_index_builder.core.errors import (
    AlreadyProcessedError,
    BuilderConfigurationError,
    BuildError,
    EventValidationError,
    InfrastructureError,
    SociBuilderError,
    TagError,
)
from soci_index_builder.core.logs import RequestLoggerAdapter
from soci_index_builder.core.reporter import (
    ALREADY_PROCESSED_MESSAGE,
    SKIP_NO_TAG_MESSAGE,
    SKIP_PUSH_ON_EMPTY_INDEX_MESSAGE,
    OutcomeReporter,
)
from soci_index_builder.core.validator import validate_event
from soci_index_builder.core.watchdog import DeadlineWatchdog
from soci_index_builder.core.workspace import Workspace, WorkspaceManager
from soci_index_builder.models.build import (
    BuildStrategy,
    ConvertedBuildResult,
    EmptyBuildResult,
    SkippedBuildResult,
    converted_tag,
)
from soci_index_builder.models.context import RequestContext
from soci_index_builder.models.oci import ImageRef, Platform
from soci_index_builder.models.outcome import Outcome
from soci_index_builder.registry.session import RegistrySession
from soci_index_builder.storage.artifacts_db import ArtifactsDb
from soci_index_builder.storage.oci_layout import OciLayoutStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, logging.LoggerAdapter], RegistrySession]


class InvocationPipeline:
    """Runs one invocation end to end.

    Parameters
    ----------
    settings:
        Deployment settings. Loaded from the environment if not provided.
    builder_factory:
        Build library adapter factory. Resolved from
        ``settings.builder_factory`` on first use if not provided.
    session_factory:
        Opens a ``RegistrySession`` for a registry host. Defaults to ECR
        authentication via boto3.
    workspace_manager:
        Defaults to a manager rooted at ``settings.work_root``.
    platform:
        Build platform; defaults to the runtime's.
    """

    def __init__(
        self,
        settings: BuilderSettings | None = None,
        *,
        builder_factory: BuilderFactory | None = None,
        session_factory: SessionFactory | None = None,
        workspace_manager: WorkspaceManager | None = None,
        platform: Platform | None = None,
    ) -> None:
        self.settings = settings or BuilderSettings()
        self.strategy: BuildStrategy = self.settings.strategy
        self.workspace_manager = workspace_manager or WorkspaceManager(
            self.settings.work_root,
            min_free_bytes=self.settings.min_free_space_bytes,
        )
        self.platform = platform or Platform.default()
        self._builder_factory = builder_factory
        self._session_factory = session_factory or self._open_session

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        payload: Any,
        *,
        request_id: str,
        deadline: datetime | None = None,
    ) -> Outcome:
        """Process one trigger payload and return its outcome."""
        if deadline is None:
            deadline = datetime.now(timezone.utc) + timedelta(seconds=self.settings.default_timeout_seconds)

        reporter = OutcomeReporter(RequestLoggerAdapter(logger, {"request_id": request_id}))
        try:
            context = validate_event(payload, request_id=request_id, deadline=deadline)
        except EventValidationError as exc:
            return reporter.error("validation", exc)

        log = RequestLoggerAdapter.for_context(logger, context)
        reporter = OutcomeReporter(log)
        log.info("Using SOCI index version: %s", self.strategy.value)

        try:
            session = self._session_factory(context.registry_url, log)
        except InfrastructureError as exc:
            return reporter.error("registry_init", exc)

        try:
            return self._run_with_session(context, session, reporter, log)
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run_with_session(
        self,
        context: RequestContext,
        session: RegistrySession,
        reporter: OutcomeReporter,
        log: RequestLoggerAdapter,
    ) -> Outcome:
        # Pre-flight failures of any kind are reported as a no-op so that
        # replayed or ineligible events are not retried.
        try:
            session.validate_idempotency(
                context.repository_name, context.image_digest, self.strategy, tag=context.image_tag
            )
        except (AlreadyProcessedError, InfrastructureError) as exc:
            return reporter.skip(ALREADY_PROCESSED_MESSAGE, stage="idempotency", detail=str(exc))

        skipped = IndexBuildOrchestrator.preflight(self.strategy, context)
        if skipped is not None:
            return reporter.skip(SKIP_NO_TAG_MESSAGE, stage="build")
        if self.strategy == BuildStrategy.V2:
            log.info("Using original image tag with suffix: %s", converted_tag(context.image_tag))

        try:
            workspace = self.workspace_manager.acquire(context.request_id)
        except InfrastructureError as exc:
            return reporter.error("workspace", exc)

        watchdog = DeadlineWatchdog(
            context.deadline,
            lambda: self.workspace_manager.release(workspace),
            margin=timedelta(seconds=self.settings.deadline_margin_seconds),
            log=log,
        ).start()
        try:
            return self._build_and_push(context, session, workspace, reporter, log)
        finally:
            self.workspace_manager.release(workspace)
            watchdog.cancel()

    def _build_and_push(
        self,
        context: RequestContext,
        session: RegistrySession,
        workspace: Workspace,
        reporter: OutcomeReporter,
        log: RequestLoggerAdapter,
    ) -> Outcome:
        try:
            store = OciLayoutStore(workspace.oci_store_path)
            artifacts_db = ArtifactsDb(workspace.artifacts_db_path)
        except InfrastructureError as exc:
            return reporter.error("storage", exc)

        try:
            image_desc = session.pull(context.repository_name, context.image_digest, store)
        except InfrastructureError as exc:
            return reporter.error("pull", exc)
        image = ImageRef(name=context.image_name, target=image_desc)

        try:
            builder = self._make_builder(
                BuildEnvironment(
                    workspace=workspace,
                    oci_store=store,
                    artifacts_db=artifacts_db,
                    build_tool_identifier=self.settings.build_tool_identifier,
                )
            )
            orchestrator = IndexBuildOrchestrator(
                builder, artifacts_db, self.strategy, platform=self.platform, log=log
            )
            result = orchestrator.build(context, image)
        except (BuildError, BuilderConfigurationError) as exc:
            return reporter.error("build", exc)

        if isinstance(result, EmptyBuildResult):
            return reporter.skip(SKIP_PUSH_ON_EMPTY_INDEX_MESSAGE, stage="build", detail=result.reason)
        if isinstance(result, SkippedBuildResult):
            return reporter.skip(SKIP_NO_TAG_MESSAGE, stage="build")

        push_log = log.bind(soci_index_digest=result.descriptor.digest)
        tag = result.tag if isinstance(result, ConvertedBuildResult) else ""
        try:
            session.push(store, result.descriptor, context.repository_name, tag)
        except TagError as exc:
            return OutcomeReporter(push_log).error("tag", exc)
        except SociBuilderError as exc:
            return OutcomeReporter(push_log).error("push", exc)

        return OutcomeReporter(push_log).success()

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _builder_factory_for(self) -> BuilderFactory:
        if self._builder_factory is None:
            self._builder_factory = load_builder_factory(self.settings.builder_factory)
        return self._builder_factory

    def _make_builder(self, env: BuildEnvironment) -> IndexBuilder:
        factory = self._builder_factory_for()
        try:
            return factory(env)
        except (BuildError, BuilderConfigurationError):
            raise
        except Exception as exc:
            raise BuildError(f"cannot create build library adapter: {exc}") from exc

    def _open_session(self, registry_url: str, log: logging.LoggerAdapter) -> RegistrySession:
        return RegistrySession.init(
            registry_url,
            scheme=self.settings.registry_scheme,
            timeout=self.settings.registry_timeout_seconds,
            log=log,
        )
