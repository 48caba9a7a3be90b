"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Common base classes for the migration workflows

"""
from collections.abc import Callable, Sequence
from kubemigrate.common import exceptions
from kubemigrate.common.kube import KubeClient
from typing import Any, Generic, Protocol, TypeVar

import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")
StepResult_co = TypeVar("StepResult_co", covariant=True)


class Step(Generic[StepResult_co]):
    def run_step(self, kube: KubeClient, context: "StepsContext") -> StepResult_co:
        raise NotImplementedError


class StepFailedError(exceptions.PermanentException):
    pass


class LeadershipCheck(Protocol):
    def check(self) -> None: ...


class StepsContext:
    def __init__(self) -> None:
        self.step_results: dict[type[Step], Any] = {}

    def get_result(self, step_class: type[Step[T]]) -> T:
        return self.step_results[step_class]

    def set_result(self, step_class: type[Step[T]], result: T) -> None:
        if step_class in self.step_results:
            if self.step_results[step_class] is not None or result is not None:
                raise RuntimeError(f"result already set for step {step_class}")
        self.step_results[step_class] = result


def run_steps(
    steps: Sequence[Step[Any]],
    kube: KubeClient,
    context: StepsContext | None = None,
    *,
    lease: LeadershipCheck | None = None,
    on_step: Callable[[int, int, Step[Any]], None] | None = None,
) -> StepsContext:
    """Run the steps in order, threading their results through the context.

    There is no retry and no rollback; the first failing step stops the
    run and its exception propagates to the caller.
    """
    context = StepsContext() if context is None else context
    for i, step in enumerate(steps, 1):
        step_name = step.__class__.__name__
        if lease is not None:
            lease.check()
        logger.debug("Step %d/%d: %s", i, len(steps), step_name)
        if on_step is not None:
            on_step(i, len(steps), step)
        try:
            r = step.run_step(kube, context)
        except exceptions.MigrateException as e:
            logger.info("Step %s failed: %s", step_name, str(e))
            raise
        context.set_result(step.__class__, r)
    return context
