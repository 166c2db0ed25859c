"""Provisioning steps and the ordered pipeline that runs them.

Install order (uninstall runs the same table backwards):

    roles → users → content-db → triggers-db → schemas-db
          → rest-instance → server-config → modules

Security objects come first because databases and servers reference them;
databases must exist before the REST instance attaches to them; the server
must exist before its properties are updated; modules are loaded last into
the configured instance. The triggers and schemas databases attach themselves
to the content database once they exist and detach before they are deleted.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type

from hubdeploy.models.errors import LedgerPersistenceError, StepExecutionError
from hubdeploy.models.status import Direction
from hubdeploy.models.target import HubConfig, TargetDescriptor
from hubdeploy.services import ledger as change_ledger
from hubdeploy.services.manage_client import DEFAULT_GROUP, ManageClient
from hubdeploy.services.synchronizer import AssetSynchronizer
from hubdeploy.utils.templating import load_payload, load_payloads

logger = logging.getLogger("hubdeploy.steps")

# Server-provided databases a content database points at when none of ours is attached
BUILTIN_TRIGGERS_DATABASE = "Triggers"
BUILTIN_SCHEMAS_DATABASE = "Schemas"


@dataclass(frozen=True)
class StepContext:
    """Collaborators a step runs against during one pipeline run."""

    target: TargetDescriptor
    config: HubConfig
    client: ManageClient
    synchronizer: AssetSynchronizer

    def payload_path(self, relative: str) -> Path:
        return self.config.config_dir / relative


@dataclass(frozen=True)
class Step(ABC):
    """One idempotent provisioning action with an install and an uninstall side."""

    name: ClassVar[str] = "step"

    @classmethod
    def from_target(cls, target: TargetDescriptor) -> "Step":
        return cls()

    @abstractmethod
    async def execute(self, context: StepContext) -> None:
        """Bring the target to this step's desired state (create-or-update)."""

    @abstractmethod
    async def rollback(self, context: StepContext) -> None:
        """Remove what ``execute`` created; absent resources are not an error."""


@dataclass(frozen=True)
class _ResourceStep(Step):
    """Saves every payload in a directory as one management resource type."""

    resource_type: ClassVar[str]
    payload_dir: ClassVar[str]
    name_field: ClassVar[str]

    def _payloads(self, context: StepContext) -> List[Dict[str, Any]]:
        return load_payloads(context.payload_path(self.payload_dir), context.target.tokens())

    async def execute(self, context: StepContext) -> None:
        for payload in self._payloads(context):
            await context.client.save_resource(
                self.resource_type, payload[self.name_field], payload
            )

    async def rollback(self, context: StepContext) -> None:
        for payload in reversed(self._payloads(context)):
            await context.client.delete_resource(self.resource_type, payload[self.name_field])


@dataclass(frozen=True)
class RoleStep(_ResourceStep):
    name: ClassVar[str] = "roles"
    resource_type: ClassVar[str] = "roles"
    payload_dir: ClassVar[str] = "security/roles"
    name_field: ClassVar[str] = "role-name"


@dataclass(frozen=True)
class UserStep(_ResourceStep):
    name: ClassVar[str] = "users"
    resource_type: ClassVar[str] = "users"
    payload_dir: ClassVar[str] = "security/users"
    name_field: ClassVar[str] = "user-name"


@dataclass(frozen=True)
class _DatabaseStep(Step):
    """Saves a database and makes sure its forests exist on every host.

    A step with a ``content_property`` links its database to the content
    database after creating it and unlinks it before deleting it, so the
    content database never names a database that does not exist.
    """

    payload_file: ClassVar[str]
    content_property: ClassVar[Optional[str]] = None
    detached_value: ClassVar[Optional[str]] = None
    forests_per_host: int = 1

    async def execute(self, context: StepContext) -> None:
        payload = load_payload(context.payload_path(self.payload_file), context.target.tokens())
        database = payload["database-name"]
        await context.client.save_resource("databases", database, payload)

        hosts = await context.client.list_hosts()
        index = 0
        for host in hosts:
            for _ in range(self.forests_per_host):
                index += 1
                forest = f"{database}-{index}"
                if await context.client.resource_exists("forests", forest):
                    continue
                await context.client.create_resource(
                    "forests",
                    {"forest-name": forest, "host": host, "database": database},
                )

        if self.content_property is not None:
            await self._link(context, database)

    async def rollback(self, context: StepContext) -> None:
        payload = load_payload(context.payload_path(self.payload_file), context.target.tokens())
        if self.content_property is not None:
            await self._link(context, self.detached_value)
        await context.client.delete_resource(
            "databases", payload["database-name"], params={"forest-delete": "data"}
        )

    async def _link(self, context: StepContext, value: Optional[str]) -> None:
        content = context.target.content_database
        if not await context.client.resource_exists("databases", content):
            logger.info(f"Content database {content} absent, not setting {self.content_property}")
            return
        await context.client.update_properties(
            "databases", content, {self.content_property: value}
        )


@dataclass(frozen=True)
class ContentDatabaseStep(_DatabaseStep):
    name: ClassVar[str] = "content-db"
    payload_file: ClassVar[str] = "databases/content-database.json"

    @classmethod
    def from_target(cls, target: TargetDescriptor) -> "ContentDatabaseStep":
        return cls(forests_per_host=target.forests_per_host)


@dataclass(frozen=True)
class TriggersDatabaseStep(_DatabaseStep):
    name: ClassVar[str] = "triggers-db"
    payload_file: ClassVar[str] = "databases/triggers-database.json"
    content_property: ClassVar[Optional[str]] = "triggers-database"
    detached_value: ClassVar[Optional[str]] = BUILTIN_TRIGGERS_DATABASE


@dataclass(frozen=True)
class SchemasDatabaseStep(_DatabaseStep):
    name: ClassVar[str] = "schemas-db"
    payload_file: ClassVar[str] = "databases/schemas-database.json"
    content_property: ClassVar[Optional[str]] = "schema-database"
    detached_value: ClassVar[Optional[str]] = BUILTIN_SCHEMAS_DATABASE


@dataclass(frozen=True)
class RestApiInstanceStep(Step):
    """Creates the REST API instance (app server plus modules database)."""

    name: ClassVar[str] = "rest-instance"
    payload_file: ClassVar[str] = "rest-api.json"

    async def execute(self, context: StepContext) -> None:
        if await context.client.server_exists(context.target.application_name):
            logger.info(
                f"REST API instance {context.target.application_name} already exists"
            )
            return
        payload = load_payload(context.payload_path(self.payload_file), context.target.tokens())
        await context.client.create_rest_api(payload)

    async def rollback(self, context: StepContext) -> None:
        await context.client.delete_rest_api(context.target.application_name)


@dataclass(frozen=True)
class ServerConfigStep(Step):
    """Applies app server properties; the server itself belongs to the REST instance."""

    name: ClassVar[str] = "server-config"
    payload_dir: ClassVar[str] = "servers"

    async def execute(self, context: StepContext) -> None:
        payloads = load_payloads(context.payload_path(self.payload_dir), context.target.tokens())
        for payload in payloads:
            await context.client.save_resource(
                "servers",
                payload["server-name"],
                payload,
                params={"group-id": payload.get("group-name", DEFAULT_GROUP)},
            )

    async def rollback(self, context: StepContext) -> None:
        pass


@dataclass(frozen=True)
class ModulesStep(Step):
    """Loads bundled and user modules through the asset synchronizer."""

    name: ClassVar[str] = "modules"

    @staticmethod
    def _roots(config: HubConfig) -> List[Path]:
        roots = list(config.module_roots)
        if config.user_module_root is not None:
            roots.append(config.user_module_root)
        return roots

    async def execute(self, context: StepContext) -> None:
        await context.synchronizer.sync(self._roots(context.config), context.config.ledger_path)

    async def rollback(self, context: StepContext) -> None:
        # The modules database goes away with the REST instance, so a later
        # install must upload everything again.
        ledger_path = context.config.ledger_path
        if ledger_path is None or not ledger_path.exists():
            return
        ledger = change_ledger.forget(
            change_ledger.load(ledger_path), self._roots(context.config)
        )
        try:
            change_ledger.persist(ledger, ledger_path)
        except LedgerPersistenceError as e:
            logger.warning(str(e))


STEP_TABLE: Tuple[Type[Step], ...] = (
    RoleStep,
    UserStep,
    ContentDatabaseStep,
    TriggersDatabaseStep,
    SchemasDatabaseStep,
    RestApiInstanceStep,
    ServerConfigStep,
    ModulesStep,
)


class CommandPipeline:
    """Runs steps in table order for install and in reverse for uninstall.

    Fail-fast: the first failing step aborts the run. Steps that already
    completed are left in place; re-running install (steps are idempotent)
    or an explicit uninstall is how callers recover.
    """

    def __init__(self, steps: Tuple[Step, ...]):
        self.logger = logging.getLogger("hubdeploy.pipeline")
        self.steps = steps

    @classmethod
    def build(cls, target: TargetDescriptor) -> "CommandPipeline":
        """Instantiate every step in ``STEP_TABLE`` for a target."""
        return cls(tuple(step_cls.from_target(target) for step_cls in STEP_TABLE))

    def ordered(self, direction: Direction) -> Tuple[Step, ...]:
        if direction == Direction.INSTALL:
            return self.steps
        return tuple(reversed(self.steps))

    async def execute(
        self,
        context: StepContext,
        direction: Direction,
        on_step: Optional[Callable[[int, int, str], None]] = None,
    ) -> List[str]:
        """Run all steps in the given direction.

        Args:
            context: Step collaborators for this run
            direction: INSTALL (forward, ``execute``) or UNINSTALL (reverse, ``rollback``)
            on_step: Called as (index, total, step name) before each step

        Returns:
            Names of the steps that completed, in execution order

        Raises:
            StepExecutionError: On the first step that fails
        """
        steps = self.ordered(direction)
        completed: List[str] = []
        total = len(steps)

        for idx, step in enumerate(steps, start=1):
            self.logger.info(f"[{idx}/{total}] {direction.value} {step.name}")
            if on_step is not None:
                on_step(idx, total, step.name)
            try:
                if direction == Direction.INSTALL:
                    await step.execute(context)
                else:
                    await step.rollback(context)
            except Exception as e:
                self.logger.error(f"{direction.value} step {step.name} failed: {e}")
                raise StepExecutionError(step.name, direction.value, e) from e
            completed.append(step.name)

        self.logger.info(f"{direction.value} finished: {len(completed)} steps")
        return completed
