"""Process manager: creates instances and exposes them to monitoring."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .config import StepChainConfig, load_config
from .contracts import Principal, StatusRecord
from .definition import ProcessDefinition
from .engines import TaskEngineFactory, get_engine_factory
from .persistence import StatusStore, get_store
from .process import ProcessInstance
from .statistics import build_statistics_table
from .utils.ids import IdGenerator, random_id_generator

logger = logging.getLogger(__name__)


class ProcessManager:
    """Service responsible for creating and tracking process instances."""

    def __init__(
        self,
        store: Optional[StatusStore] = None,
        engine_factory: Optional[TaskEngineFactory] = None,
        id_generator: Optional[IdGenerator] = None,
        config: Optional[StepChainConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.store = store or get_store(config=config)
        self.engine_factory = engine_factory or get_engine_factory(config=self.config)
        self._id_generator = id_generator or random_id_generator()
        self._instances: Dict[str, ProcessInstance] = {}

    def create_instance(
        self, definition: ProcessDefinition, description: Optional[str] = None
    ) -> ProcessInstance:
        instance = ProcessInstance(
            definition,
            description,
            store=self.store,
            engine_factory=self.engine_factory,
            id_generator=self._id_generator,
            config=self.config,
        )
        if instance.id in self._instances:
            raise ValueError(f"Duplicate process id generated: {instance.id}")
        self._instances[instance.id] = instance
        logger.debug(f"Created process {instance.id} for '{definition.name}'")
        return instance

    async def start_process(
        self,
        definition: ProcessDefinition,
        principal: Principal,
        params: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> ProcessInstance:
        """Create an instance, parse ``params`` and run it to completion.

        Raises:
            DeserializeError: If the definition rejects ``params``. The
                instance is not started in that case.
        """
        instance = self.create_instance(definition, description)
        instance.init(params or {})
        await instance.run(principal)
        return instance

    def get_instance(self, process_id: str) -> Optional[ProcessInstance]:
        return self._instances.get(process_id)

    def list_instances(self) -> List[ProcessInstance]:
        return list(self._instances.values())

    def active_instances(self) -> List[ProcessInstance]:
        return [i for i in self._instances.values() if not i.is_halted]

    def purge_completed(self) -> int:
        """Forget halted instances. Returns how many were removed."""
        halted = [pid for pid, i in self._instances.items() if i.is_halted]
        for pid in halted:
            del self._instances[pid]
        return len(halted)

    def statistics(self) -> Dict[str, Dict[str, object]]:
        """Statistics table of every tracked instance, keyed by ``_id``."""
        return build_statistics_table(self._instances.values())

    # ------------------------------------------------------------------
    # Stored state
    def instance_path(self, process_id: str) -> str:
        return f"{self.config.base_path.rstrip('/')}/{process_id}"

    async def read_status(self, process_id: str) -> Optional[StatusRecord]:
        """Load the persisted status record of ``process_id``."""
        principal = Principal.service(self.config.service_principal)
        async with self.store.session(principal) as session:
            record = await session.get(self.instance_path(process_id))
        if record is None:
            return None
        return StatusRecord.model_validate(record)

    async def read_failures(self, process_id: str) -> List[Dict[str, Any]]:
        """Load persisted failures, ordered by step then by entry."""
        principal = Principal.service(self.config.service_principal)
        root = f"{self.instance_path(process_id)}/failures"
        failures: List[Dict[str, Any]] = []
        async with self.store.session(principal) as session:
            if await session.get(root) is None:
                return failures
            for step_path in sorted(
                await session.list_children(root), key=lambda p: _entry_number(p, "step")
            ):
                step_name = step_path.rsplit("/", 1)[-1]
                entries = await session.list_children(step_path)
                for err_path in sorted(entries, key=lambda p: _entry_number(p, "err")):
                    record = await session.get(err_path) or {}
                    failures.append({"step": step_name, **record})
        return failures


def _entry_number(path: str, prefix: str) -> int:
    name = path.rsplit("/", 1)[-1]
    digits = name[len(prefix):] if name.startswith(prefix) else ""
    return int(digits) if digits.isdigit() else -1
