"""Hook execution engine.

Runs the step list for a (type, phase) strictly in order, threading one
working context through the steps. The first failing step stops the phase.
"""

import copy
import dataclasses
import inspect
import logging

from typeforge.errors import HookStepFailedError, UnknownHookActionError
from typeforge.hooks.registry import HookRegistry
from typeforge.hooks.store import HookStore
from typeforge.hooks.types import HookContext, HookPhase

logger = logging.getLogger(__name__)


class HookEngine:
    """Executes phase flows from a HookStore using actions from a HookRegistry."""

    def __init__(self, store: HookStore, registry: HookRegistry):
        self.store = store
        self.registry = registry

    async def run_phase(
        self, type_key: str, phase: HookPhase | str, ctx: HookContext
    ) -> HookContext:
        """Run every step registered for *type_key* / *phase*.

        Each action receives the working context with ``meta.phase`` and a deep
        copy of the step's args in ``meta.step_args``. Whatever it returns
        becomes the working context; returning None keeps the current one.

        Raises:
            UnknownHookActionError: A step names an unregistered action
            HookStepFailedError: A step raised; wraps the original error
        """
        phase = HookPhase(phase)
        steps = self.store.get_flow(type_key, phase)

        for step in steps:
            action_fn = self.registry.get(step.action)
            if action_fn is None:
                raise UnknownHookActionError(step.action, phase.value, type_key)

            ctx = dataclasses.replace(
                ctx,
                meta=dataclasses.replace(
                    ctx.meta,
                    phase=phase,
                    step_args=copy.deepcopy(step.args) if step.args is not None else {},
                ),
            )

            request_id = ctx.meta.request_id
            logger.debug("start %s/%s/%s req=%s", phase.value, type_key, step.action, request_id)
            try:
                returned = action_fn(ctx)
                if inspect.isawaitable(returned):
                    returned = await returned
            except Exception as e:
                logger.error(
                    "Hook step failed %s/%s/%s req=%s: %s",
                    phase.value,
                    type_key,
                    step.action,
                    request_id,
                    e,
                )
                raise HookStepFailedError(phase.value, type_key, step.action, e) from e
            logger.debug("end %s/%s/%s req=%s", phase.value, type_key, step.action, request_id)

            if returned is not None:
                ctx = returned

        return ctx
