"""Push local changes to the sync service and fold in its reply."""

import logging

from .client import SyncClient, SyncError
from .store import ThreadStore

logger = logging.getLogger(__name__)


def sync_store(store: ThreadStore, client: SyncClient) -> int:
    """Run one sync round. Returns the number of threads pushed.

    Pending changes are cleared only after the server accepts the push; on
    any error they stay queued for the next attempt.
    """
    if not store.is_premium():
        raise SyncError("Sync is only available for premium accounts.")

    sync_state = store.get_sync_state()
    modified = store.threads_modified_since(sync_state.last_sync)

    if not modified and not sync_state.pending_changes:
        logger.info("No changes to sync")
        return 0

    result = client.push(modified, sync_state.pending_changes, sync_state.last_sync)

    for raw in result.threads:
        store.import_thread(raw)
    if result.threads:
        logger.info("Merged %d threads from the server", len(result.threads))

    store.acknowledge_sync()
    logger.info("Synced %d threads", len(modified))
    return len(modified)
