"""
Capability providers.

Routers depend on these functions rather than on concrete classes, so tests
can swap any external collaborator through app.dependency_overrides.
"""
from functools import lru_cache

from fastapi import Depends

from app.services.ai_feedback import FeedbackClient, OpenRouterFeedbackClient
from app.services.ingestion import IngestionTracker
from app.services.kv_store import KeyValueStore, SqlKeyValueStore
from app.services.pdf_render import PdfRenderer
from app.services.presentation import ObjectUrlRegistry, PresentationLoader, ReviewSessionStore
from app.services.storage import FileStorage, LocalFileStorage
from app.routers.auth_deps import get_current_user, get_optional_user


@lru_cache
def get_storage() -> FileStorage:
    return LocalFileStorage()


@lru_cache
def get_kv_store() -> KeyValueStore:
    return SqlKeyValueStore()


def get_feedback_client(storage: FileStorage = Depends(get_storage)) -> FeedbackClient:
    return OpenRouterFeedbackClient(storage)


@lru_cache
def get_renderer() -> PdfRenderer:
    return PdfRenderer()


@lru_cache
def get_tracker() -> IngestionTracker:
    return IngestionTracker()


@lru_cache
def get_blob_registry() -> ObjectUrlRegistry:
    return ObjectUrlRegistry()


@lru_cache
def get_review_sessions() -> ReviewSessionStore:
    return ReviewSessionStore(get_blob_registry())


def get_presentation_loader(
    storage: FileStorage = Depends(get_storage),
    kv: KeyValueStore = Depends(get_kv_store),
    registry: ObjectUrlRegistry = Depends(get_blob_registry),
) -> PresentationLoader:
    return PresentationLoader(storage, kv, registry)


__all__ = [
    "get_current_user",
    "get_optional_user",
    "get_storage",
    "get_kv_store",
    "get_feedback_client",
    "get_renderer",
    "get_tracker",
    "get_blob_registry",
    "get_review_sessions",
    "get_presentation_loader",
]
