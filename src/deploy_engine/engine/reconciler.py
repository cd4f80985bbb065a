"""Deployment reconciler.

Evaluates the deploy script, converges every declared target with the
state recorded by the last successful run, kills what is no longer
declared and persists the new state. Any failure before the state is
persisted rolls back every completed action, newest first.
"""

import asyncio
import copy
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog

from ..config import EngineConfig
from ..errors import (
    ActionContext,
    DeclarationError,
    DeployError,
    PluginActionError,
    PluginLoadError,
    ScriptError,
    StateNotSavedError,
)
from ..plugins.base import DeployPlugin
from ..plugins.loader import PluginRegistry
from ..secrets import Secrets
from ..state.lock import DeployLock
from ..state.models import TargetRecord
from ..state.store import TargetStore
from ..worktree import ensure_clean_worktree
from .context import DeployContext
from .diff import ChangeSet, diff_targets
from .queue import Declaration, DeclarationQueue
from .revert import RevertStack
from .script import DeployScript, load_deploy_script
from .targets import ActionRecord, PriorTarget, ResolvedTarget, target_identity

logger = structlog.get_logger()

NO_ACTIONS_HINT = (
    "No deployment actions were required. If you expected otherwise, a deploy "
    "target may be missing the metadata needed to detect changes."
)


class RunState(str, Enum):
    """Reconciliation lifecycle."""

    PENDING = "pending"
    LOADING = "loading"
    DECLARING = "declaring"
    APPLYING = "applying"
    AWAITING_COMPLETION = "awaitingCompletion"
    KILLING = "killing"
    PERSISTING = "persisting"
    ROLLING_BACK = "rollingBack"
    DONE = "done"
    FAILED = "failed"


class DeployOutcome(str, Enum):
    """How a successful run ended."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    PLANNED = "planned"  # Dry run with changes


@dataclass
class DeployResult:
    """Result of a reconciliation run."""

    outcome: DeployOutcome
    dry_run: bool = False
    actions: List[ActionRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    state_path: Optional[str] = None  # Store or side file written

    def _count(self, action: str) -> int:
        return sum(1 for record in self.actions if record.action == action)

    @property
    def spawned(self) -> int:
        return self._count("spawn")

    @property
    def updated(self) -> int:
        return self._count("update")

    @property
    def killed(self) -> int:
        return self._count("kill")

    @property
    def changed(self) -> bool:
        return self.outcome != DeployOutcome.UNCHANGED


class Reconciler:
    """Runs one deployment against the target store."""

    def __init__(
        self,
        config: EngineConfig,
        script: Optional[DeployScript] = None,
        plugins: Optional[PluginRegistry] = None,
        store: Optional[TargetStore] = None,
    ):
        """Initialize reconciler.

        Args:
            config: Engine configuration
            script: Deploy script entry point; loaded from config when omitted
            plugins: Plugin registry, possibly with plugins pre-registered
            store: Target store; defaults to the configured YAML file
        """
        self.config = config
        self.dry_run = config.dry_run
        self.store = store or TargetStore(config.state_path)
        self.lock = DeployLock(config.lock_path)
        self.secrets = Secrets(config.secrets_path)
        self.plugins = plugins or PluginRegistry()
        self.reverts = RevertStack()
        self.state = RunState.PENDING
        self.context: Optional[DeployContext] = None

        self.actions: List[ActionRecord] = []
        self.warnings: List[str] = []

        self._script = script
        self._prior_records: Dict[str, TargetRecord] = {}
        self._prior: Dict[str, List[PriorTarget]] = {}
        self._identified: Set[str] = set()
        self._resolved: List[ResolvedTarget] = []
        self._seen: Dict[Tuple[str, str], int] = {}
        self._unrevertable: List[ActionContext] = []
        self._warned: Set[Tuple[str, str]] = set()

    async def run(self) -> DeployResult:
        """Run the deployment.

        Returns:
            DeployResult

        Raises:
            PreconditionError: If the lock is held or the worktree is dirty
            DeployError: If reconciliation failed; completed actions were reverted
            StateNotSavedError: If the store could not be written after applying
        """
        if self.state != RunState.PENDING:
            raise RuntimeError("A Reconciler can only run once")

        logger.info(
            "reconciler.starting",
            root=self.config.root_path,
            dry_run=self.dry_run,
        )

        if not self.dry_run:
            if self.config.require_clean_worktree:
                await ensure_clean_worktree(self.config.root_path)
            self.lock.acquire()

        try:
            return await self._run()
        finally:
            self.lock.release()

    async def _run(self) -> DeployResult:
        try:
            await self._load()
            await self._declare_and_apply()

            killable = await self._find_killable()
            if not killable and not self.actions:
                logger.info("reconciler.no_actions_required", hint=NO_ACTIONS_HINT)
                self._transition(RunState.DONE)
                return self._result(DeployOutcome.UNCHANGED)

            await self._kill(killable)
        except (Exception, asyncio.CancelledError) as e:
            await self._roll_back(e)
            raise

        return await self._persist()

    def _transition(self, state: RunState):
        self.state = state
        logger.debug("reconciler.state", state=state.value)

    async def _load(self):
        self._transition(RunState.LOADING)
        self._prior_records = await self.store.load()
        for name, record in self._prior_records.items():
            self._prior[name] = [PriorTarget(provider=name, target=t) for t in record.targets]

    async def _declare_and_apply(self):
        script = self._script
        if script is None:
            script = await load_deploy_script(self.config.deploy_script, self.config.root_path)

        queue = DeclarationQueue(self._apply, on_first=self._prepare)
        self.context = DeployContext(
            root=self.config.root_path,
            queue=queue,
            secrets=self.secrets,
            dry_run=self.dry_run,
        )
        self.plugins.context = self.context

        self._transition(RunState.DECLARING)
        consumer = queue.start()
        evaluation = asyncio.create_task(self._evaluate(script))

        try:
            await asyncio.wait({evaluation, consumer}, return_when=asyncio.FIRST_COMPLETED)

            if consumer.done():
                # The consumer only stops before close when applying a target failed
                evaluation.cancel()
                await asyncio.gather(evaluation, return_exceptions=True)
                consumer.result()

            error = evaluation.exception()
            if error is not None:
                queue.abort()
                await asyncio.gather(consumer, return_exceptions=True)
                raise error

            self._transition(RunState.AWAITING_COMPLETION)
            queue.close()
            await consumer
        finally:
            pending = [task for task in (evaluation, consumer) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("reconciler.declarations_complete", declared=len(self._resolved))

    async def _evaluate(self, script: DeployScript):
        try:
            result = script(self.context)
            if inspect.isawaitable(result):
                await result
        except DeployError:
            raise
        except Exception as e:
            logger.error("reconciler.script_failed", error=str(e))
            raise ScriptError(f"Deploy script failed: {e}") from e

    async def _prepare(self):
        """One-time setup before the first declared target is applied."""
        self._transition(RunState.APPLYING)
        try:
            await self.secrets.load()
        except Exception as e:
            raise DeclarationError(f"Cannot load secrets: {e}") from e

        for hook in self.context.hooks:
            await self.plugins.load(hook)

    async def _apply(self, declaration: Declaration, target: Dict[str, Any]) -> Dict[str, Any]:
        plugin = await self.plugins.load(declaration.hook)
        name = plugin.name
        target = dict(target)

        pull = getattr(plugin, "pull", None)
        if pull is not None:
            pulled = await self._invoke(ActionContext(name, "pull"), pull, target)
            if pulled:
                target.update(pulled)

        fields = await self._invoke(ActionContext(name, "identify"), plugin.identify, target)
        resolved = ResolvedTarget(
            index=declaration.index,
            provider=name,
            hook=declaration.hook,
            identity=target_identity(fields),
            target=target,
        )
        self._resolved.append(resolved)
        self._check_duplicate(resolved)

        prior = await self._find_prior(plugin, resolved.identity)
        if prior is None:
            await self._spawn(plugin, resolved)
            return target

        prior.claimed_by = resolved.index
        changes, changed = diff_targets(prior.target, target)
        if not changed:
            logger.info(
                "reconciler.target_unchanged",
                provider=name,
                identity=resolved.identity[:12],
            )
            return target

        await self._update(plugin, prior, resolved, changes)
        return target

    def _check_duplicate(self, resolved: ResolvedTarget):
        key = (resolved.provider, resolved.identity)
        first = self._seen.get(key)
        if first is None:
            self._seen[key] = resolved.index
            return

        self._warn(
            "reconciler.duplicate_identity",
            f'Targets #{first} and #{resolved.index} of provider "{resolved.provider}" '
            f"share identity {resolved.identity[:12]}; both are compared against the "
            f"same stored target and the later one claims it",
        )

    async def _find_prior(self, plugin: DeployPlugin, identity: str) -> Optional[PriorTarget]:
        """First stored target of the provider with a matching identity."""
        priors = self._prior.get(plugin.name)
        if not priors:
            return None

        if plugin.name not in self._identified:
            self._identified.add(plugin.name)
            for prior in priors:
                fields = await self._invoke(
                    ActionContext(plugin.name, "identify"), plugin.identify, prior.target
                )
                prior.identity = target_identity(fields)

        for prior in priors:
            if prior.identity == identity:
                return prior
        return None

    async def _spawn(self, plugin: DeployPlugin, resolved: ResolvedTarget):
        context = ActionContext(resolved.provider, "spawn", resolved.identity)
        revertible = True
        if not self.dry_run:
            revert = await self._invoke(context, plugin.spawn, resolved.target)
            revertible = self._push_revert(revert, context)

        self.actions.append(
            ActionRecord(
                action="spawn",
                provider=resolved.provider,
                identity=resolved.identity,
                target=resolved.target,
                revertible=revertible,
            )
        )
        logger.info(
            "reconciler.target_spawned",
            provider=resolved.provider,
            identity=resolved.identity[:12],
            dry_run=self.dry_run,
        )

    async def _update(
        self,
        plugin: DeployPlugin,
        prior: PriorTarget,
        resolved: ResolvedTarget,
        changes: ChangeSet,
    ):
        update = getattr(plugin, "update", None)
        revertible = True

        if update is not None:
            context = ActionContext(resolved.provider, "update", resolved.identity)
            if not self.dry_run:
                revert = await self._invoke(context, update, resolved.target, changes)
                revertible = self._push_revert(revert, context)
        elif not self.dry_run:
            # No update hook: replace the resource
            context = ActionContext(resolved.provider, "kill", resolved.identity)
            revert = await self._invoke(context, plugin.kill, prior.target)
            revertible = self._push_revert(revert, context)

            context = ActionContext(resolved.provider, "spawn", resolved.identity)
            revert = await self._invoke(context, plugin.spawn, resolved.target)
            revertible = self._push_revert(revert, context) and revertible

        self.actions.append(
            ActionRecord(
                action="update",
                provider=resolved.provider,
                identity=resolved.identity,
                target=resolved.target,
                changes=changes,
                replaced=update is None,
                revertible=revertible,
            )
        )
        logger.info(
            "reconciler.target_updated",
            provider=resolved.provider,
            identity=resolved.identity[:12],
            changed_fields=sorted(changes),
            replaced=update is None,
            dry_run=self.dry_run,
        )

    async def _find_killable(self) -> List[Tuple[DeployPlugin, PriorTarget]]:
        """Stored targets no declaration claimed, in store order."""
        killable: List[Tuple[DeployPlugin, PriorTarget]] = []

        for name, record in self._prior_records.items():
            unclaimed = [prior for prior in self._prior.get(name, []) if not prior.reused]
            if not unclaimed:
                continue

            plugin = self.plugins.get(name) or await self.plugins.load(record.hook)
            if plugin.name != name:
                raise PluginLoadError(
                    record.hook, f'expected provider "{name}", got "{plugin.name}"'
                )
            killable.extend((plugin, prior) for prior in unclaimed)

        return killable

    async def _kill(self, killable: List[Tuple[DeployPlugin, PriorTarget]]):
        self._transition(RunState.KILLING)

        for plugin, prior in killable:
            context = ActionContext(plugin.name, "kill", prior.identity)
            revertible = True
            if not self.dry_run:
                revert = await self._invoke(context, plugin.kill, prior.target)
                revertible = self._push_revert(revert, context)

            self.actions.append(
                ActionRecord(
                    action="kill",
                    provider=plugin.name,
                    identity=prior.identity,
                    target=prior.target,
                    revertible=revertible,
                )
            )
            logger.info(
                "reconciler.target_killed",
                provider=plugin.name,
                target=prior.target,
                dry_run=self.dry_run,
            )

    async def _invoke(self, context: ActionContext, hook: Callable, *args) -> Any:
        """Call a plugin hook, tagging failures with the provider and action."""
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                result = await result
        except DeployError:
            raise
        except Exception as e:
            logger.error(
                "reconciler.plugin_failed",
                provider=context.provider,
                action=context.action,
                identity=context.identity,
                error=str(e),
            )
            raise PluginActionError(context, e) from e
        return result

    def _push_revert(self, revert: Any, context: ActionContext) -> bool:
        if callable(revert):
            self.reverts.push(revert, context)
            return True

        self._unrevertable.append(context)
        key = (context.provider, context.action)
        if key not in self._warned:
            self._warned.add(key)
            self._warn(
                "reconciler.no_revert_function",
                f'Plugin "{context.provider}" did not return a rollback function for its '
                f'"{context.action}" action. If an error happens while deploying, its '
                f"effects won't be automatically reversible!",
            )
        return False

    def _warn(self, event: str, message: str):
        self.warnings.append(message)
        logger.warning(event, message=message)

    async def _roll_back(self, error: BaseException):
        self._transition(RunState.ROLLING_BACK)

        details: Dict[str, Any] = {"error": str(error) or type(error).__name__}
        if isinstance(error, PluginActionError):
            details["provider"] = error.context.provider
            details["action"] = error.context.action
        elif isinstance(error, DeclarationError) and error.hook:
            details["hook"] = error.hook
        logger.error("reconciler.failed", dry_run=self.dry_run, **details)

        failures: List[Tuple[ActionContext, BaseException]] = []
        if self.dry_run:
            logger.info("reconciler.rollback_skipped", reason="dry run")
        else:
            logger.info("reconciler.reverting", count=len(self.reverts))
            failures = await self.reverts.drain()
            if failures:
                logger.error(
                    "reconciler.rollback_errors",
                    failed=[str(context) for context, _ in failures],
                )
            if self._unrevertable:
                logger.warning(
                    "reconciler.rollback_incomplete",
                    unrevertable=[str(context) for context in self._unrevertable],
                )

        if isinstance(error, DeployError):
            error.rollback_errors = failures
            error.unrevertable = list(self._unrevertable)

        self._transition(RunState.FAILED)

    async def _persist(self) -> DeployResult:
        self._transition(RunState.PERSISTING)
        records = self._build_records()

        if self.dry_run:
            path = self.config.dry_run_path
            try:
                await self.store.write_preview(records, path)
            except Exception as e:
                self._transition(RunState.FAILED)
                raise StateNotSavedError(f"Cannot write dry run output to {path}: {e}") from e

            logger.info("reconciler.dry_run_complete", path=path, actions=len(self.actions))
            self._transition(RunState.DONE)
            return self._result(DeployOutcome.PLANNED, path)

        try:
            await self.store.save(records)
        except Exception as e:
            self._transition(RunState.FAILED)
            logger.error("reconciler.state_not_saved", path=self.store.path, error=str(e))
            raise StateNotSavedError(
                f"Deployment succeeded but the target store was not saved ({e}); "
                f"{self.store.path} must be reconciled manually"
            ) from e

        result = self._result(DeployOutcome.APPLIED, self.store.path)
        logger.info(
            "reconciler.applied",
            spawned=result.spawned,
            updated=result.updated,
            killed=result.killed,
        )
        self._transition(RunState.DONE)
        return result

    def _build_records(self) -> Dict[str, TargetRecord]:
        """New store contents: every declared target, unchanged ones included."""
        records: Dict[str, TargetRecord] = {}
        for resolved in self._resolved:
            record = records.get(resolved.provider)
            if record is None:
                record = TargetRecord(provider=resolved.provider, hook=resolved.hook)
                records[resolved.provider] = record
            record.targets.append(copy.deepcopy(resolved.target))
        return records

    def _result(self, outcome: DeployOutcome, state_path: Optional[str] = None) -> DeployResult:
        return DeployResult(
            outcome=outcome,
            dry_run=self.dry_run,
            actions=list(self.actions),
            warnings=list(self.warnings),
            state_path=state_path,
        )


async def deploy(
    config: Optional[EngineConfig] = None,
    script: Optional[DeployScript] = None,
    plugins: Optional[PluginRegistry] = None,
) -> DeployResult:
    """Run one deployment with the given (or environment) configuration."""
    reconciler = Reconciler(config or EngineConfig(), script=script, plugins=plugins)
    return await reconciler.run()
