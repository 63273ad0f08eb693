from resumable_upload.coordinator import UploadCoordinator
from resumable_upload.merger import FILES_PREFIX


def _hash_from_output_key(key: str) -> str | None:
    name = key.rsplit("/", 1)[-1]
    file_hash, sep, millis = name.rpartition("_")
    if not sep or not millis.isdigit():
        return None
    return file_hash


def cleanup_once(coordinator: UploadCoordinator) -> dict[str, int]:
    """Reclaim blobs that no live session or registered file refers to.

    Sessions expire inside the coordination store, but their fragments stay in
    the blob store until something removes them.
    """
    fragments = coordinator.fragments
    sessions = coordinator.sessions
    merger = coordinator.merger
    storage = coordinator.storage

    expired_sessions = 0
    fragment_keys_deleted = 0
    for file_hash in sorted(fragments.list_hashes()):
        if sessions.exists(file_hash) or merger.merge_in_progress(file_hash):
            continue
        expired_sessions += 1
        fragment_keys_deleted += fragments.purge(file_hash)

    orphan_files_deleted = 0
    for key in storage.list_keys(f"{FILES_PREFIX}/"):
        file_hash = _hash_from_output_key(key)
        if file_hash is None or merger.merge_in_progress(file_hash):
            continue
        metadata = coordinator.registry.find_by_hash(file_hash)
        if metadata is not None and metadata.stored_path == key:
            continue
        storage.delete_key(key)
        orphan_files_deleted += 1

    return {
        "expired_sessions_purged": expired_sessions,
        "fragment_keys_deleted": fragment_keys_deleted,
        "orphan_files_deleted": orphan_files_deleted,
    }
