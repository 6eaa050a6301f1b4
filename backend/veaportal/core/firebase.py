import json
import base64
import asyncio
import logging
from functools import partial
from typing import Optional

from firebase_admin import credentials, initialize_app, get_app, firestore

logger = logging.getLogger("vea")

_client = None


def init_firebase(encoded_key: Optional[str]) -> None:
    try:
        get_app()
        logger.info("✅ Firebase Admin SDK already initialized")
        return
    except ValueError:
        pass

    if not encoded_key:
        raise RuntimeError("❌ FIREBASE_KEY environment variable is not set")

    try:
        decoded_json = base64.b64decode(encoded_key).decode("utf-8")
        service_account_info = json.loads(decoded_json)
        logger.info("🔑 Successfully loaded Firebase credentials from FIREBASE_KEY")
    except Exception as e:
        raise RuntimeError(f"❌ Failed to decode or parse FIREBASE_KEY: {e}")

    project_id = service_account_info.get("project_id")
    if not project_id:
        raise ValueError("❌ 'project_id' missing in Firebase service account JSON")

    initialize_app(credentials.Certificate(service_account_info))
    logger.info(f"🔥 Firebase Admin SDK initialized successfully | Project: {project_id}")


def get_firestore(encoded_key: Optional[str]):
    """Firestore client, initialized on first use only when the firestore backend is selected."""
    global _client
    if _client is None:
        init_firebase(encoded_key)
        try:
            _client = firestore.client()
            logger.info("✅ Firestore client ready")
        except Exception as e:
            logger.error(f"❌ Failed to initialize Firestore client: {e}")
            raise
    return _client


async def firestore_run(fn, *args, **kwargs):
    """Blocking Firestore SDK call, pushed to the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args, **kwargs))


__all__ = ["get_firestore", "init_firebase", "firestore_run"]
