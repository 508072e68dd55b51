"""Service singletons and dependency injection for the generation API."""

import asyncio

from api.catalog_store import CatalogStore
from api.task_store import close_task_store, get_task_store
from services.genai_backend import GenAIBackend
from services.storage_gateway import StorageGateway, create_storage_gateway
from services.task_orchestrator import TaskOrchestrator
from utils.config import load_config

# Service singletons
_storage_gateway: StorageGateway | None = None
_genai_backend: GenAIBackend | None = None
_orchestrator: TaskOrchestrator | None = None
# Creation awaits the task store connection; one request builds it
_orchestrator_lock = asyncio.Lock()


def get_storage_gateway() -> StorageGateway:
    """Get or create the storage gateway (backend fixed at first use)."""
    global _storage_gateway
    if _storage_gateway is None:
        _storage_gateway = create_storage_gateway(load_config())
    return _storage_gateway


def get_genai_backend() -> GenAIBackend:
    """Get or create the generative backend."""
    global _genai_backend
    if _genai_backend is None:
        config = load_config()
        _genai_backend = GenAIBackend(
            api_key=config.get("gemini_api_key", ""),
            model_name=config.get("genai_model", ""),
        )
    return _genai_backend


async def get_orchestrator() -> TaskOrchestrator:
    """Get or create the task orchestrator, connecting the task store if needed."""
    global _orchestrator
    async with _orchestrator_lock:
        if _orchestrator is None:
            task_store = await get_task_store()
            _orchestrator = TaskOrchestrator(
                task_store=task_store,
                storage=get_storage_gateway(),
                backend=get_genai_backend(),
                catalog=CatalogStore(task_store.db),
                config=load_config(),
            )
    return _orchestrator


async def close_services() -> None:
    """Close HTTP clients and the task store; called at shutdown."""
    global _storage_gateway, _genai_backend, _orchestrator
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
    if _storage_gateway is not None:
        await _storage_gateway.close()
        _storage_gateway = None
    _genai_backend = None
    await close_task_store()
