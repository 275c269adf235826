"""Execution of the lifecycle hooks of a release.

Hooks bound to an event run one at a time in weight order. Each hook
resource is created and then awaited until it completes, and its outcome is
recorded on the release. The `helm.sh/hook-delete-policy` annotation decides
when the hook resources are removed:

- `before-hook-creation` removes a previous copy before creating the hook,
  and is the default when no policy is set
- `hook-succeeded` removes the resources once every hook for the event passed
- `hook-failed` removes the resources of a hook that failed
"""

import logging
from typing import TYPE_CHECKING

from .exceptions import HookException
from .manifest import Manifest, SimpleHead
from .release import (
    Hook,
    HookDeletePolicy,
    HookEvent,
    HookExecution,
    HookPhase,
    Release,
)
from .sorter import sort_hooks

if TYPE_CHECKING:
    from .action import Configuration

__all__ = [
    "exec_hooks",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_HOOK_TIMEOUT = 300.0


def _hook_manifest(hook: Hook) -> Manifest:
    return Manifest(
        name=hook.path,
        content=hook.manifest,
        head=SimpleHead(kind=hook.kind, name=hook.name),
    )


def _delete_policies(hook: Hook) -> list[HookDeletePolicy]:
    return hook.delete_policies or [HookDeletePolicy.BEFORE_HOOK_CREATION]


async def _delete_by_policy(
    config: "Configuration", hook: Hook, policy: HookDeletePolicy
) -> None:
    if policy not in _delete_policies(hook):
        return
    _LOGGER.debug("Deleting hook %s for policy %s", hook.name, policy)
    await config.kube.delete([_hook_manifest(hook)])


async def exec_hooks(
    config: "Configuration",
    rls: Release,
    event: HookEvent,
    timeout: float = DEFAULT_HOOK_TIMEOUT,
) -> None:
    """Run the hooks of the release bound to the event.

    Raises a HookException when a hook could not be created or did not
    complete successfully.
    """
    hooks = sort_hooks([hook for hook in rls.hooks if event in hook.events])
    for hook in hooks:
        await _delete_by_policy(config, hook, HookDeletePolicy.BEFORE_HOOK_CREATION)

        manifest = _hook_manifest(hook)
        hook.last_run = HookExecution(started_at=config.now(), phase=HookPhase.RUNNING)
        config.record_release(rls)

        _LOGGER.debug("Executing %s hook %s", event, hook.name)
        try:
            await config.kube.create([manifest])
        except Exception as err:
            hook.last_run.completed_at = config.now()
            hook.last_run.phase = HookPhase.FAILED
            raise HookException(hook.name, event, str(err)) from err

        try:
            await config.kube.wait_for_completion(manifest, timeout)
        except Exception as err:
            hook.last_run.completed_at = config.now()
            hook.last_run.phase = HookPhase.FAILED
            await _delete_by_policy(config, hook, HookDeletePolicy.HOOK_FAILED)
            raise HookException(hook.name, event, str(err)) from err
        hook.last_run.completed_at = config.now()
        hook.last_run.phase = HookPhase.SUCCEEDED

    for hook in hooks:
        await _delete_by_policy(config, hook, HookDeletePolicy.HOOK_SUCCEEDED)
