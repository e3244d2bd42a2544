"""Home Assistant scene reconciliation and activation engine."""
import logging
from typing import Optional

from .api import HassClient
from .scenes import SceneManager
from .settings import HassSettings, load_settings
from .storage import SceneBackupStorage

_LOGGER = logging.getLogger(__name__)


async def async_setup(settings: Optional[HassSettings] = None, config_dir: Optional[str] = None) -> SceneManager:
    """Build the client, backup store and scene manager for one process."""
    if settings is None:
        settings = load_settings(config_dir)
    if not settings.configured:
        _LOGGER.info("Home Assistant connection not configured yet; waiting for scene_configure")

    client = await HassClient.create(settings)
    storage = SceneBackupStorage(config_dir)
    manager = SceneManager(client, storage, config_dir=config_dir)
    _LOGGER.debug(
        "Scene engine ready: url=%s backup=%s writer=%s",
        settings.url or "<unset>", storage.path, manager.writer_id,
    )
    return manager


async def async_unload(manager: SceneManager) -> None:
    await manager.client.close()
