"""Store factory functions.

Engines and Firestore clients are process-wide: the first store built for a
given database URL or project creates them, later ones reuse them.
"""

import os
import threading
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from conti.database.base import Store
from conti.database.live import ChangeNotifier
from conti.database.models import create_engine_for_url
from conti.database.sqlalchemy_db import DEFAULT_GUARDED_WRITE_ATTEMPTS, SQLAlchemyStore
from conti.domain.errors import ValidationError
from conti.logging_config import get_logger

logger = get_logger(__name__)

SQLITE = "sqlite"
FIRESTORE = "firestore"

_lock = threading.Lock()
_engines: dict[str, tuple[AsyncEngine, ChangeNotifier]] = {}
_firestore_clients: dict[Optional[str], tuple[Any, Any]] = {}


def _owner_from_env(owner_id: Optional[str]) -> Optional[str]:
    return owner_id if owner_id is not None else os.environ.get("CONTI_OWNER_ID")


def _guarded_write_attempts() -> int:
    return int(os.environ.get("CONTI_GUARDED_WRITE_ATTEMPTS", DEFAULT_GUARDED_WRITE_ATTEMPTS))


def default_database_path() -> str:
    """Return CONTI_DB_PATH, or ~/.conti/conti.db (creating the directory)."""
    database_path = os.environ.get("CONTI_DB_PATH")
    if database_path is None:
        db_dir = Path.home() / ".conti"
        db_dir.mkdir(exist_ok=True)
        database_path = str(db_dir / "conti.db")
    return database_path


def get_engine(database_url: str) -> tuple[AsyncEngine, ChangeNotifier]:
    """Return the shared engine and change notifier for a database URL."""
    shared = _engines.get(database_url)
    if shared is None:
        with _lock:
            shared = _engines.get(database_url)
            if shared is None:
                logger.debug(f"Creating engine for {database_url}")
                shared = (create_engine_for_url(database_url), ChangeNotifier())
                _engines[database_url] = shared
    return shared


def create_sqlite_store(database_path: Optional[str] = None, owner_id: Optional[str] = None) -> SQLAlchemyStore:
    """Create a SQLite-backed store.

    Args:
        database_path: Path to SQLite database file. If None, checks CONTI_DB_PATH
            environment variable, then defaults to ~/.conti/conti.db
        owner_id: Owner identifier. If None, checks CONTI_OWNER_ID; without
            either, every operation raises UnauthenticatedError

    Returns:
        SQLAlchemyStore sharing the process-wide engine for that file
    """
    if database_path is None:
        database_path = default_database_path()
    engine, notifier = get_engine(f"sqlite+aiosqlite:///{database_path}")
    return SQLAlchemyStore(
        engine,
        _owner_from_env(owner_id),
        notifier=notifier,
        guarded_write_attempts=_guarded_write_attempts(),
    )


def get_firestore_clients(project: Optional[str] = None) -> tuple[Any, Any]:
    """Return the shared (async, watch) Firestore client pair for a project."""
    shared = _firestore_clients.get(project)
    if shared is None:
        with _lock:
            shared = _firestore_clients.get(project)
            if shared is None:
                from google.cloud import firestore

                logger.debug(f"Creating Firestore clients for project {project or '<default>'}")
                shared = (firestore.AsyncClient(project=project), firestore.Client(project=project))
                _firestore_clients[project] = shared
    return shared


def create_firestore_store(project: Optional[str] = None, owner_id: Optional[str] = None) -> Store:
    """Create a Firestore-backed store.

    Args:
        project: Google Cloud project. If None, checks CONTI_FIRESTORE_PROJECT,
            then lets the client library resolve it
        owner_id: Signed-in user id. If None, checks CONTI_OWNER_ID
    """
    from conti.database.firestore_db import FirestoreStore

    project = project or os.environ.get("CONTI_FIRESTORE_PROJECT")
    client, watch_client = get_firestore_clients(project)
    return FirestoreStore(
        client,
        _owner_from_env(owner_id),
        watch_client=watch_client,
        guarded_write_attempts=_guarded_write_attempts(),
    )


def create_store(
    backend: Optional[str] = None,
    database_path: Optional[str] = None,
    owner_id: Optional[str] = None,
    project: Optional[str] = None,
) -> Store:
    """Create a store for the configured backend (CONTI_BACKEND, default sqlite)."""
    backend = (backend or os.environ.get("CONTI_BACKEND", SQLITE)).lower()
    if backend == SQLITE:
        return create_sqlite_store(database_path, owner_id)
    if backend == FIRESTORE:
        return create_firestore_store(project, owner_id)
    raise ValidationError(f"Unknown store backend '{backend}' (expected '{SQLITE}' or '{FIRESTORE}')")


def create_repository(store: Optional[Store] = None, **store_options: Any):
    """Build a Repository over the given store, or over create_store(**store_options)."""
    from conti.domain.repository import Repository

    return Repository(store if store is not None else create_store(**store_options))


async def dispose() -> None:
    """Dispose every shared engine and forget the shared Firestore clients."""
    with _lock:
        engines = list(_engines.values())
        _engines.clear()
        _firestore_clients.clear()
    for engine, _ in engines:
        await engine.dispose()
