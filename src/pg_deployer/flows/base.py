"""Deployment flow state machine."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Sequence, TypeVar

from ..components import Component, create_component
from ..config import ClusterConfig
from ..errors import ConfigurationError, OperationTimeoutError, ValidationFailure
from ..interaction import CLIInteractionHandler, UserInteractionHandler, confirm
from ..rollback import RollbackManager
from ..secrets import Secrets
from ..ssh.executor import RemoteExecutor
from ..utils.logging import DeployLogger
from ..utils.retry import CancellationToken, with_timeout
from ..validator import ValidationResult, Validator, structural_errors

T = TypeVar("T")


class FlowState(str, Enum):
    INIT = "init"
    HEADER_PRINTED = "header_printed"
    VALIDATED = "validated"
    PLAN_PRINTED = "plan_printed"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CANCELLED = "cancelled"
    EXECUTING = "executing"
    ROLLED_BACK = "rolled_back"
    SUCCEEDED = "succeeded"


class FlowOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    DRY_RUN = "dry_run"


@dataclass
class DeploymentContext:
    """Everything one top-level operation needs; created per call."""

    config: ClusterConfig
    executor: RemoteExecutor
    secrets: Secrets
    interaction: UserInteractionHandler
    logger: DeployLogger = field(default_factory=DeployLogger)
    rollback: Optional[RollbackManager] = None
    skip_validation: bool = False
    assume_yes: bool = False
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.rollback is None:
            self.rollback = RollbackManager(self.config, self.executor, self.logger)

    @classmethod
    def create(
        cls,
        config: ClusterConfig,
        *,
        executor: Optional[RemoteExecutor] = None,
        interaction: Optional[UserInteractionHandler] = None,
        skip_validation: bool = False,
        assume_yes: bool = False,
        timeout: Optional[float] = None,
    ) -> "DeploymentContext":
        return cls(
            config=config,
            executor=executor or RemoteExecutor(config),
            secrets=Secrets(config.secrets),
            interaction=interaction or CLIInteractionHandler(),
            skip_validation=skip_validation,
            assume_yes=assume_yes,
            timeout=timeout,
        )

    def close(self) -> None:
        self.executor.close()

    def __enter__(self) -> "DeploymentContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()


class DeploymentFlow(ABC):
    """Validate, plan, confirm, then deploy under compensating rollback."""

    allow_primary_only = False

    def __init__(self, context: DeploymentContext) -> None:
        self.context = context
        self.state = FlowState.INIT
        self.history: List[FlowState] = [FlowState.INIT]
        self.validation_result = ValidationResult()
        self._deadline: Optional[float] = None

    @property
    def config(self) -> ClusterConfig:
        return self.context.config

    @property
    def executor(self) -> RemoteExecutor:
        return self.context.executor

    @property
    def logger(self) -> DeployLogger:
        return self.context.logger

    @property
    def rollback(self) -> RollbackManager:
        if self.context.rollback is None:
            raise ConfigurationError("Deployment context has no rollback manager")
        return self.context.rollback

    def _transition(self, state: FlowState) -> None:
        self.state = state
        self.history.append(state)

    def execute(self, dry_run: bool = False) -> FlowOutcome:
        self.print_header()
        self._transition(FlowState.HEADER_PRINTED)

        self.validate_prerequisites()
        if not self.context.skip_validation:
            self.run_preflight_checks()
        self._transition(FlowState.VALIDATED)

        self.print_plan()
        self._transition(FlowState.PLAN_PRINTED)
        if dry_run:
            self.logger.info("Dry run: no changes were made.")
            return FlowOutcome.DRY_RUN

        self._transition(FlowState.AWAITING_CONFIRMATION)
        if not self.confirm_deployment():
            self.logger.info("Deployment cancelled.")
            self._transition(FlowState.CANCELLED)
            return FlowOutcome.CANCELLED

        self._transition(FlowState.EXECUTING)
        try:
            self.rollback.with_rollback(self.operation_name, self._deploy)
        except Exception:
            self._transition(FlowState.ROLLED_BACK)
            raise
        self._transition(FlowState.SUCCEEDED)

        self.print_success_message()
        return FlowOutcome.SUCCEEDED

    def _deploy(self) -> None:
        timeout = self.context.timeout
        self._deadline = None if timeout is None else time.monotonic() + timeout
        try:
            self.deploy_components()
        finally:
            self._deadline = None

    def bounded(self, action: Callable[[], T]) -> T:
        """Run one step's remote work within what is left of the deadline.

        Steps, and the compensations they register, stay on the calling
        thread; only ``action`` moves to a deadline worker, and it has
        stopped by the time a timeout is raised here.
        """
        if self._deadline is None:
            return action()
        timeout = self.context.timeout
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise OperationTimeoutError(self.operation_name, timeout)  # type: ignore[arg-type]

        def body(token: CancellationToken) -> T:
            self.executor.bind_token(token)
            try:
                return action()
            finally:
                self.executor.bind_token(None)

        try:
            return with_timeout(body, remaining, self.operation_name)
        except OperationTimeoutError as exc:
            raise OperationTimeoutError(self.operation_name, timeout) from exc  # type: ignore[arg-type]

    @property
    @abstractmethod
    def operation_name(self) -> str:
        ...

    @abstractmethod
    def target_hosts(self) -> List[str]:
        ...

    @abstractmethod
    def list_deployment_steps(self) -> List[str]:
        ...

    @abstractmethod
    def deploy_components(self) -> None:
        ...

    @abstractmethod
    def list_next_steps(self) -> List[str]:
        ...

    def print_header(self) -> None:
        self.logger.section(self.operation_name)
        self.logger.info(f"Environment: {self.config.environment}")
        self.print_targets()

    def print_targets(self) -> None:
        self.logger.info(f"Targets: {', '.join(self.target_hosts())}")

    def validate_prerequisites(self) -> None:
        """Structural checks; raise before any remote call."""
        result = structural_errors(self.config, allow_primary_only=self.allow_primary_only)
        if result.errors:
            raise ConfigurationError("; ".join(result.errors))
        self.validate_specific_requirements()

    def validate_specific_requirements(self) -> None:
        pass

    def build_validator(self) -> Validator:
        return Validator(
            self.config,
            self.executor,
            hosts=self.target_hosts(),
            allow_primary_only=self.allow_primary_only,
        )

    def run_preflight_checks(self) -> None:
        with self.logger.task("Running pre-flight validation"):
            validator = self.build_validator()
            passed = validator.validate_all()
            self.validation_result = validator.result
            if not passed:
                raise ValidationFailure(validator.result)

    def print_plan(self) -> None:
        self.logger.info("This will:")
        for step in self.list_deployment_steps():
            self.logger.info(f"  • {step}")
        for warning in self.list_warnings():
            self.logger.warning(f"⚠️  {warning}")

    def list_warnings(self) -> List[str]:
        return list(self.validation_result.warnings)

    def confirm_deployment(self) -> bool:
        if self.context.assume_yes:
            self.logger.info("Proceeding without prompt (--yes)")
            return True
        return confirm(self.context.interaction, "Do you want to proceed?")

    def setup_component(self, name: str, hosts: Sequence[str]) -> Component:
        """Prepare, register per-host compensations, then install."""
        hosts = list(hosts)
        with self.logger.task(f"Setting up {name}"):
            component = create_component(name, self.config, self.executor, self.context.secrets)
            self.bounded(lambda: component.prepare(hosts))
            for host in hosts:
                self.rollback.register(
                    f"Uninstall {name} on {host}",
                    partial(component.uninstall, [host]),
                    host=host,
                )
            self.bounded(lambda: component.install(hosts))
            self.logger.success(f"{name} setup complete")
        return component

    def print_success_message(self) -> None:
        self.logger.success(f"{self.operation_name} complete!")
        self.logger.section("Database Connection Details")
        primary = self.config.primary
        if primary is not None:
            self.logger.info(f"Primary Host (Public):  {primary.host}")
            self.logger.info(f"Primary Host (Private): {primary.replication_address}")
        if self.config.standbys:
            self.logger.info("Standbys:")
            for node in self.config.standbys:
                self.logger.info(f"  - {node.host} (Private: {node.replication_address})")
        self.logger.info(f"Port: {self.client_port}")
        self.logger.info("Next steps:")
        for index, step in enumerate(self.list_next_steps(), 1):
            self.logger.info(f"  {index}. {step}")

    @property
    def client_port(self) -> int:
        return 6432 if self.config.component_enabled("pooler") else 5432
