"""Tests for the sync engine."""

from unittest.mock import Mock

import pytest
from conftest import (
    REMOTE_DB_PATH,
    SYNC_URL,
    TEST_KDF_ITERATIONS,
    make_vault_bytes,
)

from pyvaultsync.exceptions import (
    ConnectError,
    CredentialError,
    DatabaseError,
    TransferError,
)
from pyvaultsync.sync import (
    OVERRIDE_PROMPT,
    Protocol,
    SyncContext,
    SyncEngine,
    SyncResultCode,
    SyncStep,
)
from pyvaultsync.vault import MAGIC, MasterKey, Record, RecordVault

BACKUP_PATH = REMOTE_DB_PATH + ".bak"


def _context(credentials, attended=True, confirm=None, url=SYNC_URL):
    return SyncContext(
        url=url, credentials=credentials, attended=attended, confirm_override=confirm
    )


def _remote_titles(endpoint, tmp_path, master_key):
    path = tmp_path / "check.kdbx"
    path.write_bytes(endpoint.read(REMOTE_DB_PATH))
    vault = RecordVault.open(path, master_key)
    titles = sorted(r.title for r in vault.records)
    vault.close()
    return titles


class TestValidation:
    """Configuration errors are detected before any network I/O."""

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "   ",
            "not a url",
            "sftp://host:port/path/to/directory/",
            "sftp://:22/backups/",
            "sftp://host:0/backups/",
            "sftp://host:70000/backups/",
            "sftp://host:22",
            "//host:22/backups/",
        ],
    )
    def test_malformed_url_returns_invalid_parameters(self, credentials, url):
        factory = Mock()
        engine = SyncEngine(endpoint_factories={Protocol.SFTP: factory})
        database = Mock()

        result = engine.synchronize(database, _context(credentials, url=url))

        assert result == SyncResultCode.INVALID_PARAMETERS
        factory.assert_not_called()
        database.save.assert_not_called()

    @pytest.mark.parametrize(
        "url", ["ftp://host:21/backups/", "https://host:443/backups/"]
    )
    def test_unsupported_scheme_returns_invalid_protocol(self, credentials, url):
        factory = Mock()
        engine = SyncEngine(endpoint_factories={Protocol.SFTP: factory})

        result = engine.synchronize(Mock(), _context(credentials, url=url))

        assert result == SyncResultCode.INVALID_PROTOCOL
        factory.assert_not_called()

    def test_protocol_without_factory_is_invalid_protocol(self, credentials):
        engine = SyncEngine(endpoint_factories={})
        result = engine.synchronize(Mock(), _context(credentials))
        assert result == SyncResultCode.INVALID_PROTOCOL

    def test_factory_receives_target_and_credentials(
        self, credentials, endpoint, scratch_pool, local_vault
    ):
        factory = Mock(return_value=endpoint)
        engine = SyncEngine(
            endpoint_factories={Protocol.SFTP: factory}, scratch_pool=scratch_pool
        )

        engine.synchronize(local_vault, _context(credentials))

        target, creds = factory.call_args[0]
        assert target.host == "backup.example.com"
        assert target.port == 22
        assert target.remote_path == "/backups/"
        assert creds == credentials


class TestConnect:
    """Connection failures are classified."""

    def test_credential_error(self, engine, endpoint, credentials, local_vault):
        endpoint.connect_error = CredentialError("Authentication failed")
        result = engine.synchronize(local_vault, _context(credentials))
        assert result == SyncResultCode.INVALID_CREDENTIALS

    def test_message_mentioning_password(
        self, engine, endpoint, credentials, local_vault
    ):
        endpoint.connect_error = RuntimeError("Permission denied (password).")
        result = engine.synchronize(local_vault, _context(credentials))
        assert result == SyncResultCode.INVALID_CREDENTIALS

    def test_other_failure(self, engine, endpoint, credentials, local_vault):
        endpoint.connect_error = ConnectError("Connection refused")
        result = engine.synchronize(local_vault, _context(credentials))
        assert result == SyncResultCode.CONNECT_FAILED
        assert endpoint.call_names() == ["connect"]


class TestFirstUpload:
    """No remote artifact exists yet."""

    def test_call_sequence(self, engine, endpoint, credentials, local_vault):
        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.SUCCESS
        assert endpoint.calls == [
            ("connect",),
            ("exists", REMOTE_DB_PATH),
            ("exists", REMOTE_DB_PATH),
            ("upload", REMOTE_DB_PATH),
            ("exists", REMOTE_DB_PATH),
            ("download", REMOTE_DB_PATH),
            ("disconnect",),
        ]
        assert not endpoint.has(BACKUP_PATH)

    def test_remote_matches_uploaded_snapshot(
        self, engine, endpoint, credentials, local_vault, tmp_path, monkeypatch
    ):
        snapshots = []
        original_save_as = local_vault.save_as

        def capturing_save_as(path):
            original_save_as(path)
            snapshots.append(path.read_bytes())

        monkeypatch.setattr(local_vault, "save_as", capturing_save_as)

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.SUCCESS
        assert len(snapshots) == 1
        assert endpoint.read(REMOTE_DB_PATH) == snapshots[0]

    def test_remote_decrypts_with_local_key(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        engine.synchronize(local_vault, _context(credentials))
        assert _remote_titles(endpoint, tmp_path, master_key) == ["Email"]

    def test_unsaved_local_edits_are_saved(
        self, engine, credentials, local_vault, master_key
    ):
        local_vault.add(Record(title="Unsaved"))

        engine.synchronize(local_vault, _context(credentials))

        reopened = RecordVault.open(local_vault.io_path, master_key)
        assert "Unsaved" in [r.title for r in reopened.records]


class TestReconcile:
    """A remote artifact exists and is merged."""

    def test_merges_remote_records_and_keeps_backup(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        remote_bytes = make_vault_bytes(
            tmp_path, master_key, [Record(title="Bank")], "remote.kdbx"
        )
        endpoint.write(REMOTE_DB_PATH, remote_bytes)

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.SUCCESS
        assert sorted(r.title for r in local_vault.records) == ["Bank", "Email"]
        assert _remote_titles(endpoint, tmp_path, master_key) == ["Bank", "Email"]
        assert endpoint.read(BACKUP_PATH) == remote_bytes
        assert ("rename", REMOTE_DB_PATH, BACKUP_PATH) in endpoint.calls

    def test_existing_backup_is_replaced(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        remote_bytes = make_vault_bytes(tmp_path, master_key, [], "remote.kdbx")
        endpoint.write(REMOTE_DB_PATH, remote_bytes)
        endpoint.write(BACKUP_PATH, b"older generation")

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.SUCCESS
        assert endpoint.read(BACKUP_PATH) == remote_bytes
        assert ("delete", BACKUP_PATH) in endpoint.calls

    def test_local_saved_once_when_merging(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        endpoint.write(
            REMOTE_DB_PATH, make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        )
        save = Mock(wraps=local_vault.save)
        local_vault.save = save

        engine.synchronize(local_vault, _context(credentials))

        assert save.call_count == 1

    def test_progress_steps(
        self, endpoint, scratch_pool, credentials, local_vault, tmp_path, master_key
    ):
        endpoint.write(
            REMOTE_DB_PATH, make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        )
        steps = []
        engine = SyncEngine(
            endpoint_factories={Protocol.SFTP: lambda t, c: endpoint},
            scratch_pool=scratch_pool,
            progress_callback=steps.append,
        )

        engine.synchronize(local_vault, _context(credentials))

        assert steps == [
            SyncStep.CONNECT,
            SyncStep.DOWNLOAD,
            SyncStep.MERGE,
            SyncStep.UPLOAD,
            SyncStep.VERIFY,
            SyncStep.DISCONNECT,
        ]

    def test_idempotent_second_attempt(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        first = engine.synchronize(local_vault, _context(credentials))
        titles_after_first = _remote_titles(endpoint, tmp_path, master_key)
        endpoint.calls.clear()

        second = engine.synchronize(local_vault, _context(credentials))

        assert first == SyncResultCode.SUCCESS
        assert second == SyncResultCode.SUCCESS
        assert _remote_titles(endpoint, tmp_path, master_key) == titles_after_first
        # The second attempt still verifies the upload
        assert endpoint.call_names()[-2:] == ["download", "disconnect"]
        assert endpoint.call_names().count("download") == 2

    def test_download_failure(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        endpoint.write(
            REMOTE_DB_PATH, make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        )
        endpoint.download_error = TransferError("connection reset")

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.DOWNLOAD_FAILED
        assert "upload" not in endpoint.call_names()
        assert not endpoint.connected

    def test_merge_failure(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        endpoint.write(
            REMOTE_DB_PATH, make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        )
        local_vault.merge_in = Mock(side_effect=DatabaseError("boom"))

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.MERGE_FAILED
        assert "upload" not in endpoint.call_names()

    def test_unreadable_content_is_merge_failure(
        self, engine, endpoint, credentials, local_vault, master_key
    ):
        # Decrypts fine but is not a vault document
        from cryptography.fernet import Fernet

        salt = b"s" * 16
        token = Fernet(master_key.derive(salt, TEST_KDF_ITERATIONS)).encrypt(b"[1, 2")
        endpoint.write(
            REMOTE_DB_PATH,
            MAGIC + TEST_KDF_ITERATIONS.to_bytes(4, "big") + salt + token,
        )

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.MERGE_FAILED


class TestCorruptedRemote:
    """The remote artifact cannot be decrypted with the local master key."""

    @pytest.fixture
    def corrupted(self, endpoint, tmp_path):
        other_key = MasterKey("another device changed it")
        data = make_vault_bytes(tmp_path, other_key, [Record(title="X")], "o.kdbx")
        endpoint.write(REMOTE_DB_PATH, data)
        endpoint.write(BACKUP_PATH, b"previous generation")
        return data

    def test_attended_decline_leaves_remote_untouched(
        self, engine, endpoint, credentials, local_vault, corrupted
    ):
        confirm = Mock(return_value=False)

        result = engine.synchronize(
            local_vault, _context(credentials, attended=True, confirm=confirm)
        )

        assert result == SyncResultCode.MERGE_FAILED
        confirm.assert_called_once_with(OVERRIDE_PROMPT)
        assert endpoint.read(REMOTE_DB_PATH) == corrupted
        assert endpoint.read(BACKUP_PATH) == b"previous generation"
        assert not {"upload", "delete", "rename"} & set(endpoint.call_names())

    def test_attended_without_prompt_declines(
        self, engine, endpoint, credentials, local_vault, corrupted
    ):
        result = engine.synchronize(local_vault, _context(credentials, attended=True))
        assert result == SyncResultCode.MERGE_FAILED
        assert endpoint.read(REMOTE_DB_PATH) == corrupted

    def test_attended_accept_overrides(
        self, engine, endpoint, credentials, local_vault, corrupted, tmp_path, master_key
    ):
        result = engine.synchronize(
            local_vault,
            _context(credentials, attended=True, confirm=Mock(return_value=True)),
        )

        assert result == SyncResultCode.SUCCESS
        assert _remote_titles(endpoint, tmp_path, master_key) == ["Email"]

    def test_unattended_overrides_without_prompt(
        self, engine, endpoint, credentials, local_vault, corrupted, tmp_path, master_key
    ):
        confirm = Mock(return_value=False)

        result = engine.synchronize(
            local_vault, _context(credentials, attended=False, confirm=confirm)
        )

        assert result == SyncResultCode.SUCCESS
        confirm.assert_not_called()
        assert _remote_titles(endpoint, tmp_path, master_key) == ["Email"]
        # The corrupted file is deleted, not backed up; the old backup survives
        assert ("delete", REMOTE_DB_PATH) in endpoint.calls
        assert "rename" not in endpoint.call_names()
        assert endpoint.read(BACKUP_PATH) == b"previous generation"

    def test_garbage_bytes_count_as_corruption(
        self, engine, endpoint, credentials, local_vault
    ):
        endpoint.write(REMOTE_DB_PATH, b"garbage" * 10)
        result = engine.synchronize(local_vault, _context(credentials, attended=False))
        assert result == SyncResultCode.SUCCESS


class TestUploadAndVerify:
    def test_upload_failure_keeps_backup(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key
    ):
        remote_bytes = make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        endpoint.write(REMOTE_DB_PATH, remote_bytes)
        endpoint.upload_error = TransferError("disk full")

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UPLOAD_FAILED
        # The backup rename is not rolled back
        assert not endpoint.has(REMOTE_DB_PATH)
        assert endpoint.read(BACKUP_PATH) == remote_bytes

    def test_save_as_failure(self, engine, endpoint, credentials, local_vault):
        local_vault.save_as = Mock(side_effect=DatabaseError("read-only"))

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UPLOAD_FAILED
        assert "upload" not in endpoint.call_names()

    def test_truncated_upload_is_deleted(
        self, engine, endpoint, credentials, local_vault
    ):
        endpoint.tamper_upload = lambda data: data[:-1]

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UPLOAD_FAILED
        assert not endpoint.has(REMOTE_DB_PATH)
        assert ("delete", REMOTE_DB_PATH) in endpoint.calls

    def test_flipped_byte_is_deleted(self, engine, endpoint, credentials, local_vault):
        endpoint.tamper_upload = lambda data: data[:-1] + bytes([data[-1] ^ 0xFF])

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UPLOAD_FAILED
        assert not endpoint.has(REMOTE_DB_PATH)

    def test_upload_missing_at_verify(
        self, engine, endpoint, credentials, local_vault, monkeypatch
    ):
        """Test that an upload that vanished before verification fails."""
        original_upload = endpoint.upload

        def upload_then_lose(source, path):
            original_upload(source, path)
            endpoint.local_path(path).unlink()

        monkeypatch.setattr(endpoint, "upload", upload_then_lose)

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UPLOAD_FAILED
        assert not endpoint.has(REMOTE_DB_PATH)
        assert "download" not in endpoint.call_names()
        assert ("delete", REMOTE_DB_PATH) not in endpoint.calls

    def test_verify_download_failure_deletes_upload(
        self, engine, endpoint, credentials, local_vault, tmp_path, master_key,
        monkeypatch,
    ):
        remote_bytes = make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        endpoint.write(REMOTE_DB_PATH, remote_bytes)
        original_download = endpoint.download
        downloads = []

        def fail_second_download(path, sink):
            downloads.append(path)
            if len(downloads) > 1:
                endpoint.calls.append(("download", path))
                raise TransferError("connection reset")
            original_download(path, sink)

        monkeypatch.setattr(endpoint, "download", fail_second_download)

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UPLOAD_FAILED
        assert len(downloads) == 2
        assert not endpoint.has(REMOTE_DB_PATH)
        assert ("delete", REMOTE_DB_PATH) in endpoint.calls
        # The previous generation is still available
        assert endpoint.read(BACKUP_PATH) == remote_bytes

    def test_disconnected_before_finish_is_unknown_error(
        self, engine, endpoint, credentials, local_vault
    ):
        endpoint.drop_connection_after_download = True

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UNKNOWN_ERROR


class TestCleanup:
    """Scratch files never outlive an attempt."""

    @pytest.mark.parametrize(
        "scenario, expected",
        [
            ("success", SyncResultCode.SUCCESS),
            ("download_error", SyncResultCode.DOWNLOAD_FAILED),
            ("upload_error", SyncResultCode.UPLOAD_FAILED),
            ("truncated", SyncResultCode.UPLOAD_FAILED),
            ("corrupted_decline", SyncResultCode.MERGE_FAILED),
        ],
    )
    def test_no_scratch_files_left(
        self,
        engine,
        endpoint,
        scratch_pool,
        credentials,
        local_vault,
        tmp_path,
        master_key,
        scenario,
        expected,
    ):
        endpoint.write(
            REMOTE_DB_PATH, make_vault_bytes(tmp_path, master_key, [], "r.kdbx")
        )
        if scenario == "download_error":
            endpoint.download_error = TransferError("reset")
        elif scenario == "upload_error":
            endpoint.upload_error = TransferError("disk full")
        elif scenario == "truncated":
            endpoint.tamper_upload = lambda data: data[:-1]
        elif scenario == "corrupted_decline":
            endpoint.write(REMOTE_DB_PATH, b"garbage" * 10)

        result = engine.synchronize(
            local_vault, _context(credentials, confirm=Mock(return_value=False))
        )

        assert result == expected
        assert list(scratch_pool.directory.iterdir()) == []

    def test_unexpected_error_becomes_unknown_error(
        self, endpoint, scratch_pool, credentials, local_vault
    ):
        def explode(step):
            if step == SyncStep.UPLOAD:
                raise RuntimeError("unexpected")

        engine = SyncEngine(
            endpoint_factories={Protocol.SFTP: lambda t, c: endpoint},
            scratch_pool=scratch_pool,
            progress_callback=explode,
        )

        result = engine.synchronize(local_vault, _context(credentials))

        assert result == SyncResultCode.UNKNOWN_ERROR
        assert not endpoint.connected
        assert list(scratch_pool.directory.iterdir()) == []
