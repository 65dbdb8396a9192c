"""Core task lifecycle for the Xiaobao backend.

Architecture Overview
---------------------
Leaf-first, each layer only depends on the ones above it:

1. **Configuration** (config.py):
   - Environment-based settings using Pydantic Settings (XIAOBAO_ prefix)

2. **Data model and errors** (models.py, errors.py):
   - Frozen ``Task`` record with validated state transitions
   - Exception taxonomy shared by every layer

3. **Task store** (task_store.py):
   - In-memory and JSON-file implementations behind one protocol
   - Serialized, atomic snapshot writes; corrupt files are quarantined

4. **Provider client** (provider.py):
   - httpx wrapper around the Kie.ai job API, no retries of its own

5. **Poller** (poller.py):
   - Bounded status polling with transient/permanent error handling

6. **Task engine** (engine.py) and **callback notifier** (notifier.py):
   - Background runs, mock mode, restart recovery, best-effort callbacks

The prompt builder (prompt_builder.py) holds the vocabulary table and the
newspaper prompt template.

Usage Example
-------------
    from xiaobao.core import InMemoryTaskStore, TaskEngine

    engine = TaskEngine(InMemoryTaskStore(), mock=True)
    task = await engine.create_task("超市", "快乐购物")
    await engine.drain()
    print(engine.get_task(task.id).status)  # "completed"
"""

from xiaobao.core.config import XiaobaoConfig, config
from xiaobao.core.engine import TaskEngine
from xiaobao.core.poller import Poller
from xiaobao.core.prompt_builder import PromptBuilder
from xiaobao.core.provider import KieClient
from xiaobao.core.task_store import InMemoryTaskStore, JsonFileTaskStore, TaskStore

__all__ = [
    "InMemoryTaskStore",
    "JsonFileTaskStore",
    "KieClient",
    "Poller",
    "PromptBuilder",
    "TaskEngine",
    "TaskStore",
    "XiaobaoConfig",
    "config",
]
