"""Example process: validate, clean up and notify, as one step chain.

Run with:
    stepchain run guides.content_cleanup_example:ContentCleanup -p root=/content/site
"""

import asyncio
import random

from stepchain import Principal, ProcessDefinition, ProcessManager
from stepchain.errors import AuthorizationError, DeserializeError


class ContentCleanup(ProcessDefinition):
    name = "Content cleanup"

    def parse_inputs(self, params):
        root = params.get("root")
        if not root or not str(root).startswith("/"):
            raise DeserializeError("'root' must be an absolute path")
        self.root = root
        self.pages = [f"{root}/page-{i}" for i in range(5)]

    async def build_process(self, instance, principal):
        if principal.user_id == "anonymous":
            raise AuthorizationError("anonymous users may not clean up content")
        # Nothing should be deleted if validation fails.
        instance.define_critical_action("Validate pages", self.validate)
        instance.define_action("Remove stale versions", self.remove_versions)
        instance.define_action("Notify owners", self.notify)

    def validate(self, engine):
        for page in self.pages:
            engine.submit(lambda page=page: None, path=page)

    def remove_versions(self, engine):
        async def remove(page):
            await asyncio.sleep(0.01)
            if random.random() < 0.2:
                raise RuntimeError(f"version store locked for {page}")

        for page in self.pages:
            engine.submit(lambda page=page: remove(page), path=page)

    def notify(self, engine):
        engine.submit(lambda: print(f"Cleanup of {self.root} done"))


async def main():
    manager = ProcessManager()
    instance = await manager.start_process(
        ContentCleanup(), Principal(user_id="admin"), {"root": "/content/site"}
    )
    print(f"{instance.id}: {instance.info.status}")
    for failure in instance.info.reported_errors:
        print(f"  step {failure.step_index + 1}: {failure.error} ({failure.node_path})")
    print(instance.snapshot().to_row())


if __name__ == "__main__":
    asyncio.run(main())
