"""Core sync engine reconciling the local database with its remote copy."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..exceptions import DecryptionError
from .database import LocalDatabaseHandle, MergePolicy
from .remote import (
    ENDPOINT_FACTORIES,
    ConnectFailure,
    EndpointFactory,
    RemoteEndpoint,
    classify_connect_failure,
)
from .result import SyncResultCode, SyncStep
from .scratch import ScratchFilePool
from .target import Credentials, Protocol, SyncTarget, parse_sync_url
from .verify import files_are_equal

logger = logging.getLogger(__name__)

OVERRIDE_PROMPT = (
    "The remote database file may be corrupted.\n"
    "Do you want to override it with the LOCAL database file?\n"
    "WARNING:\n"
    "- If you have changed the master key of the LOCAL database since the "
    "last sync, answer yes.\n"
    "- If you have changed the master key on ANOTHER device since the last "
    "sync, answer no, THEN update the master key of the LOCAL database and "
    "THEN synchronize again."
)


@dataclass(frozen=True)
class SyncContext:
    """Everything one synchronization attempt needs besides the database."""

    url: Optional[str]
    """Stored sync URL, e.g. sftp://host:22/backups/"""

    credentials: Credentials
    """Credentials for the remote endpoint"""

    attended: bool = True
    """True if a user started the attempt and can answer prompts"""

    confirm_override: Optional[Callable[[str], bool]] = None
    """Asks whether a corrupted remote file may be overridden. Attended
    attempts without a prompt callback decline."""


@dataclass
class _Attempt:
    """Mutable state of a single attempt."""

    endpoint: RemoteEndpoint
    database: LocalDatabaseHandle
    context: SyncContext
    target: SyncTarget
    remote_db_path: str
    remote_copy: Path
    """Scratch file receiving downloads of the remote artifact"""

    upload_copy: Path
    """Scratch file holding the snapshot that gets uploaded"""

    local_saved: bool = False
    file_corrupted: bool = False


class SyncEngine:
    """Synchronizes one local database with its remote artifact.

    Each call to ``synchronize`` connects, merges the remote artifact into
    the local database if there is one, keeps the previous remote generation
    as ``<name>.bak``, uploads a fresh snapshot and verifies it byte by byte.
    Nothing is retried within an attempt.
    """

    def __init__(
        self,
        endpoint_factories: Optional[dict[Protocol, EndpointFactory]] = None,
        scratch_pool: Optional[ScratchFilePool] = None,
        progress_callback: Optional[Callable[[SyncStep], None]] = None,
    ):
        """Initialize sync engine.

        Args:
            endpoint_factories: Endpoint factory per protocol. Defaults to
                ``ENDPOINT_FACTORIES``
            scratch_pool: Allocator for scratch files
            progress_callback: Optional callback invoked when a step starts
        """
        self.endpoint_factories = (
            ENDPOINT_FACTORIES if endpoint_factories is None else endpoint_factories
        )
        self.scratch_pool = scratch_pool or ScratchFilePool()
        self.progress_callback = progress_callback

    def synchronize(
        self, database: LocalDatabaseHandle, context: SyncContext
    ) -> SyncResultCode:
        """Run one synchronization attempt.

        Args:
            database: Open local database
            context: Per-attempt settings

        Returns:
            The terminal result code. No exception escapes.

        Examples:
            >>> engine = SyncEngine()
            >>> context = SyncContext("sftp://host:22/backups/", creds)
            >>> engine.synchronize(vault, context)
            <SyncResultCode.SUCCESS: 'success'>
        """
        try:
            return self._synchronize(database, context)
        except Exception:
            logger.exception("Unexpected error during synchronization")
            return SyncResultCode.UNKNOWN_ERROR

    def _notify(self, step: SyncStep) -> None:
        logger.debug("Sync step: %s", step.value)
        if self.progress_callback is not None:
            self.progress_callback(step)

    def _synchronize(
        self, database: LocalDatabaseHandle, context: SyncContext
    ) -> SyncResultCode:
        # Step 1: Validate
        target = parse_sync_url(context.url)
        if target is None:
            logger.info("Sync URL is missing or malformed")
            return SyncResultCode.INVALID_PARAMETERS

        protocol = target.supported_protocol
        factory = self.endpoint_factories.get(protocol) if protocol else None
        if factory is None:
            logger.info("Unsupported sync protocol: %s", target.protocol)
            return SyncResultCode.INVALID_PROTOCOL

        # Step 2: Connect
        self._notify(SyncStep.CONNECT)
        endpoint = factory(target, context.credentials)
        try:
            endpoint.connect()
        except Exception as e:
            logger.warning("Connection to %s failed: %s", target.host, e)
            if classify_connect_failure(e) is ConnectFailure.BAD_CREDENTIALS:
                return SyncResultCode.INVALID_CREDENTIALS
            return SyncResultCode.CONNECT_FAILED

        try:
            return self._run(endpoint, database, context, target)
        finally:
            self._release(endpoint)

    def _run(
        self,
        endpoint: RemoteEndpoint,
        database: LocalDatabaseHandle,
        context: SyncContext,
        target: SyncTarget,
    ) -> SyncResultCode:
        attempt = _Attempt(
            endpoint=endpoint,
            database=database,
            context=context,
            target=target,
            remote_db_path=target.remote_file_path(database.io_path.name),
            remote_copy=self.scratch_pool.allocate(),
            upload_copy=self.scratch_pool.allocate(),
        )
        logger.debug("Remote database path: %s", attempt.remote_db_path)

        steps = (self._reconcile, self._corruption_gate, self._upload, self._verify)
        failure: Optional[SyncResultCode] = None
        try:
            for step in steps:
                failure = step(attempt)
                if failure is not None:
                    break
        finally:
            self.scratch_pool.discard(attempt.remote_copy)
            self.scratch_pool.discard(attempt.upload_copy)

        if failure is not None:
            return failure
        return self._finalize(endpoint)

    def _reconcile(self, attempt: _Attempt) -> Optional[SyncResultCode]:
        """Step 3: merge the remote artifact into the local database."""
        endpoint = attempt.endpoint
        try:
            remote_exists = endpoint.exists(attempt.remote_db_path)
        except Exception as e:
            logger.warning("Failed to check %s: %s", attempt.remote_db_path, e)
            return SyncResultCode.DOWNLOAD_FAILED

        if not remote_exists:
            logger.debug("No remote database yet, skipping merge")
            return None

        try:
            self._notify(SyncStep.DOWNLOAD)
            try:
                with open(attempt.remote_copy, "wb") as sink:
                    endpoint.download(attempt.remote_db_path, sink)
            except Exception as e:
                logger.warning("Download of %s failed: %s", attempt.remote_db_path, e)
                return SyncResultCode.DOWNLOAD_FAILED

            self._notify(SyncStep.MERGE)
            return self._merge(attempt)
        finally:
            self.scratch_pool.discard(attempt.remote_copy)

    def _merge(self, attempt: _Attempt) -> Optional[SyncResultCode]:
        database = attempt.database
        try:
            remote_db = database.open(attempt.remote_copy, database.master_key)
        except DecryptionError as e:
            logger.warning("Remote database could not be decrypted: %s", e)
            attempt.file_corrupted = True
            return None
        except Exception as e:
            logger.warning("Failed to open remote database: %s", e)
            return SyncResultCode.MERGE_FAILED

        try:
            # Capture unsaved local edits before merging
            database.save()
            attempt.local_saved = True
            database.merge_in(remote_db, MergePolicy.SYNCHRONIZE)
        except Exception as e:
            logger.warning("Merge failed: %s", e)
            return SyncResultCode.MERGE_FAILED
        finally:
            remote_db.close()

        logger.info("Merged remote changes into %s", database.io_path)
        return None

    def _corruption_gate(self, attempt: _Attempt) -> Optional[SyncResultCode]:
        """Step 4: decide whether a corrupted remote artifact is overridden."""
        if not attempt.file_corrupted:
            return None

        context = attempt.context
        if context.attended:
            confirmed = (
                context.confirm_override is not None
                and context.confirm_override(OVERRIDE_PROMPT)
            )
            if not confirmed:
                logger.info("Override of corrupted remote database declined")
                return SyncResultCode.MERGE_FAILED
        else:
            logger.info("Unattended sync: overriding corrupted remote database")

        # The .bak sibling is kept
        try:
            if attempt.endpoint.exists(attempt.remote_db_path):
                attempt.endpoint.delete(attempt.remote_db_path)
        except Exception as e:
            logger.warning("Failed to delete corrupted remote database: %s", e)
            return SyncResultCode.UPLOAD_FAILED
        return None

    def _upload(self, attempt: _Attempt) -> Optional[SyncResultCode]:
        """Step 5: snapshot the local database, back up the remote, upload."""
        self._notify(SyncStep.UPLOAD)
        endpoint = attempt.endpoint
        database = attempt.database
        path = attempt.remote_db_path

        try:
            if not attempt.local_saved:
                database.save()
            # The snapshot, not io_path, is what gets uploaded and verified
            database.save_as(attempt.upload_copy)

            if endpoint.exists(path):
                backup = attempt.target.backup_path(path)
                if endpoint.exists(backup):
                    endpoint.delete(backup)
                endpoint.rename(path, backup)
                logger.debug("Moved %s to %s", path, backup)

            with open(attempt.upload_copy, "rb") as source:
                endpoint.upload(source, path)
        except Exception as e:
            logger.warning("Upload of %s failed: %s", path, e)
            self.scratch_pool.discard(attempt.upload_copy)
            return SyncResultCode.UPLOAD_FAILED

        logger.debug("Uploaded %s", path)
        return None

    def _verify(self, attempt: _Attempt) -> Optional[SyncResultCode]:
        """Step 6: re-download the upload and compare it byte by byte."""
        self._notify(SyncStep.VERIFY)
        endpoint = attempt.endpoint
        path = attempt.remote_db_path

        try:
            if not endpoint.exists(path):
                logger.warning("Uploaded database %s is missing", path)
                return SyncResultCode.UPLOAD_FAILED
            with open(attempt.remote_copy, "wb") as sink:
                endpoint.download(path, sink)
            equal = files_are_equal(attempt.remote_copy, attempt.upload_copy)
        except Exception as e:
            logger.warning("Verification download of %s failed: %s", path, e)
            equal = False

        if equal:
            return None

        logger.warning("Uploaded database %s does not match, deleting it", path)
        try:
            if endpoint.exists(path):
                endpoint.delete(path)
        except Exception as e:
            logger.warning("Failed to delete unverified upload %s: %s", path, e)
        return SyncResultCode.UPLOAD_FAILED

    def _finalize(self, endpoint: RemoteEndpoint) -> SyncResultCode:
        """Step 7: disconnect; success requires a live connection."""
        self._notify(SyncStep.DISCONNECT)
        if not endpoint.is_connected:
            logger.warning("Endpoint disconnected before the sync finished")
            return SyncResultCode.UNKNOWN_ERROR
        endpoint.disconnect()
        logger.info("Synchronization completed")
        return SyncResultCode.SUCCESS

    def _release(self, endpoint: RemoteEndpoint) -> None:
        try:
            if endpoint.is_connected:
                endpoint.disconnect()
        except Exception as e:
            logger.warning("Failed to disconnect: %s", e)
