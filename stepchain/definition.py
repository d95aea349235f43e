"""Process definitions: what a chain does, as opposed to how it is driven."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any, Dict

from .contracts import Principal

if TYPE_CHECKING:
    from .process import ProcessInstance


class ProcessDefinition(metaclass=abc.ABCMeta):
    """Describes one kind of process.

    Subclasses parse their inputs in :meth:`parse_inputs` and register their
    steps in :meth:`build_process` by calling
    ``instance.define_action(...)`` or ``instance.define_critical_action(...)``.
    Raise :class:`~stepchain.errors.AuthorizationError`,
    :class:`~stepchain.errors.DeserializeError` or
    :class:`~stepchain.errors.BuildError` from ``build_process`` to abort the
    instance before any step runs.
    """

    name: str = "Unnamed process"

    def parse_inputs(self, params: Dict[str, Any]) -> None:
        """Validate and keep ``params``. Default: accept anything."""

    @abc.abstractmethod
    async def build_process(
        self, instance: "ProcessInstance", principal: Principal
    ) -> None:
        """Register the steps of ``instance``."""
        raise NotImplementedError

    async def store_report(
        self, instance: "ProcessInstance", principal: Principal
    ) -> None:
        """Persist a custom report once the instance has halted.

        ``instance.report_session`` is the open service session that holds
        the final status; records saved through it commit together with it.
        """
