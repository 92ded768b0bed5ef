import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any
from uuid import UUID

from celery import Celery

from app.core.db import create_task_session_factory
from app.models.apteka import CatalogImport, ImportStatus
from app.services.catalog_service import import_catalog, read_catalog_file


celery_app = Celery(
    "apteka_worker",
    broker=os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1"),
)
celery_app.conf.timezone = os.getenv("CELERY_TIMEZONE", "Asia/Bishkek")
logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("CATALOG_IMPORT_DIR", "/app/uploads"))


async def _update_status(
    session_factory: Any,
    import_uuid: UUID,
    status: ImportStatus,
    error_log: dict[str, Any] | None = None,
) -> None:
    async with session_factory() as session:
        catalog_import = await session.get(CatalogImport, import_uuid)
        if catalog_import is None:
            return
        catalog_import.status = status
        catalog_import.error_log = error_log
        session.add(catalog_import)
        await session.commit()


async def _import_catalog(import_id: str, file_path: str) -> dict[str, Any]:
    import_uuid = UUID(import_id)
    task_engine, session_factory = create_task_session_factory()
    try:
        await _update_status(session_factory, import_uuid, ImportStatus.PROCESSING)
        if not Path(file_path).exists():
            raise FileNotFoundError(f"Catalog file not found: {file_path}")
        dataframe = read_catalog_file(file_path)

        async with session_factory() as session:
            async with session.begin():
                summary = await import_catalog(session, dataframe)

        await _update_status(session_factory, import_uuid, ImportStatus.COMPLETED, error_log=None)
        return {"import_id": import_id, **summary}
    finally:
        await task_engine.dispose()


def _cleanup_temp_file(file_path: str) -> None:
    path = Path(file_path)
    if not path.exists() or UPLOAD_DIR not in path.parents:
        return
    try:
        path.unlink()
    except OSError:
        logger.exception("Could not remove uploaded file %s", file_path)


def _run_async_safely(coro: Any) -> Any:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        result: dict[str, Any] = {}
        error: dict[str, Exception] = {}

        def _run_in_thread() -> None:
            local_loop = asyncio.new_event_loop()
            try:
                result["value"] = local_loop.run_until_complete(coro)
            except Exception as exc:  # noqa: BLE001
                error["value"] = exc
            finally:
                local_loop.close()

        thread = threading.Thread(target=_run_in_thread)
        thread.start()
        thread.join()
        if "value" in error:
            raise error["value"]
        return result.get("value")

    new_loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(new_loop)
        return new_loop.run_until_complete(coro)
    finally:
        new_loop.close()
        asyncio.set_event_loop(None)


def _mark_failed(import_id: str, exc: Exception) -> None:
    try:
        import_uuid = UUID(import_id)
    except ValueError:
        logger.warning("Invalid import_id while marking FAILED: %s", import_id)
        return

    task_engine = None
    try:
        task_engine, session_factory = create_task_session_factory()
        _run_async_safely(
            _update_status(
                session_factory,
                import_uuid,
                ImportStatus.FAILED,
                error_log={"error": f"{type(exc).__name__}: {exc}"},
            )
        )
    except Exception:  # noqa: BLE001
        logger.exception("Could not mark catalog import %s as FAILED", import_id)
    finally:
        if task_engine is not None:
            try:
                _run_async_safely(task_engine.dispose())
            except Exception:  # noqa: BLE001
                logger.exception("Could not dispose task engine for import %s", import_id)


@celery_app.task(name="task_import_catalog")
def task_import_catalog(import_id: str, file_path: str) -> dict[str, Any]:
    try:
        return _run_async_safely(_import_catalog(import_id, file_path))
    except Exception as exc:  # noqa: BLE001
        _mark_failed(import_id, exc)
        raise
    finally:
        _cleanup_temp_file(file_path)
