"""Firebase Admin initialisation shared by auth and the Firestore store."""

import json
import logging
from pathlib import Path
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore_async

logger = logging.getLogger(__name__)


def _read_project_id(credentials_path: Path) -> str | None:
    try:
        with open(credentials_path, encoding="utf-8") as fh:
            return json.load(fh).get("project_id")
    except (OSError, ValueError):
        logger.warning(
            "Could not read project id from Firebase credentials",
            extra={"credentials_path": str(credentials_path)},
        )
        return None


def init_firebase(credentials_path: Path | None = None) -> firebase_admin.App:
    """Return the default Firebase app, initialising it on first use.

    Without a credentials file the app falls back to Application Default
    Credentials.
    """
    if firebase_admin._apps:
        return firebase_admin.get_app()

    if credentials_path is None:
        app = firebase_admin.initialize_app()
        logger.info("Initialized Firebase app with application default credentials")
        return app

    project_id = _read_project_id(credentials_path)
    options = {"projectId": project_id} if project_id else None
    app = firebase_admin.initialize_app(credentials.Certificate(str(credentials_path)), options)
    logger.info("Initialized Firebase app", extra={"firebase_project_id": project_id})
    return app


def get_async_firestore_client(
    credentials_path: Path | None = None, database_id: str | None = None
) -> Any:
    app = init_firebase(credentials_path)
    if database_id:
        return firestore_async.client(app, database_id=database_id)
    return firestore_async.client(app)
