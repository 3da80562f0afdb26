"""Tests for the pass(1) backend. The ``pass`` binary itself is mocked."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ganesh.config import reset_config
from ganesh.secrets.backends.pass_store import PassBackend, _extract_field, sanitize_path
from ganesh.secrets.models import PassBackendConfig


@pytest.fixture
def store(tmp_path: Path) -> Path:
    root = tmp_path / "password-store"
    root.mkdir()
    (root / ".gpg-id").write_text("ABCDEF0123456789\n")
    return root


def _backend(store: Path, **kwargs) -> PassBackend:
    return PassBackend(PassBackendConfig(store_path=store, **kwargs))


class TestSanitizePath:
    def test_keeps_safe_paths(self):
        assert sanitize_path("ganesh/telegram-token_v2") == "ganesh/telegram-token_v2"

    def test_strips_shell_metacharacters(self):
        assert sanitize_path("x; rm -rf ~") == "xrm-rf"

    def test_strips_traversal_and_edges(self):
        assert sanitize_path("/../etc/passwd/") == "etc/passwd"


class TestExtractField:
    def test_finds_field(self):
        assert _extract_field("pw\nusername: bob\nurl: x", "username") == "bob"

    def test_case_insensitive(self):
        assert _extract_field("pw\nUser: bob", "user") == "bob"

    def test_ignores_password_line(self):
        assert _extract_field("user: pw-line\nother: 1", "user") is None


class TestConfig:
    def test_store_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PASSWORD_STORE_DIR", str(tmp_path / "ps"))
        reset_config()
        assert PassBackend().store_path == tmp_path / "ps"

    def test_env_for_subprocess(self, store):
        env = _backend(store, gpg_opts="--batch")._env()
        assert env["PASSWORD_STORE_DIR"] == str(store)
        assert env["PASSWORD_STORE_GPG_OPTS"] == "--batch"


class TestIsAvailable:
    @pytest.mark.asyncio
    async def test_available(self, store):
        with patch("ganesh.secrets.backends.pass_store.shutil.which", return_value="/usr/bin/pass"):
            assert await _backend(store).is_available()

    @pytest.mark.asyncio
    async def test_binary_missing(self, store):
        with patch("ganesh.secrets.backends.pass_store.shutil.which", return_value=None):
            assert not await _backend(store).is_available()

    @pytest.mark.asyncio
    async def test_store_not_initialized(self, store):
        (store / ".gpg-id").unlink()
        with patch("ganesh.secrets.backends.pass_store.shutil.which", return_value="/usr/bin/pass"):
            assert not await _backend(store).is_available()


class TestResolve:
    @pytest.mark.asyncio
    async def test_first_line(self, store):
        backend = _backend(store)
        with patch.object(
            backend, "_run", AsyncMock(return_value=(0, "hunter2\nusername: bob\n", ""))
        ) as run:
            assert await backend.resolve("web/site") == "hunter2"
        run.assert_awaited_once_with("show", "--", "web/site")

    @pytest.mark.asyncio
    async def test_field(self, store):
        backend = _backend(store)
        with patch.object(
            backend, "_run", AsyncMock(return_value=(0, "hunter2\nusername: bob\n", ""))
        ):
            assert await backend.resolve("web/site", "username") == "bob"

    @pytest.mark.asyncio
    async def test_sanitized_before_exec(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock(return_value=(0, "v\n", ""))) as run:
            await backend.resolve("a/b;touch x")
        run.assert_awaited_once_with("show", "--", "a/btouchx")

    @pytest.mark.asyncio
    async def test_dash_path_is_not_an_option(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock(return_value=(0, "v\n", ""))) as run:
            await backend.resolve("--clip")
        run.assert_awaited_once_with("show", "--", "--clip")

    @pytest.mark.asyncio
    async def test_not_found_is_none(self, store):
        backend = _backend(store)
        stderr = "Error: web/nope is not in the password store.\n"
        with patch.object(backend, "_run", AsyncMock(return_value=(1, "", stderr))):
            assert await backend.resolve("web/nope") is None

    @pytest.mark.asyncio
    async def test_other_failure_is_none(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock(return_value=(2, "", "gpg: decryption failed"))):
            assert await backend.resolve("web/site") is None

    @pytest.mark.asyncio
    async def test_empty_after_sanitizing(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock()) as run:
            assert await backend.resolve(";;;") is None
        run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, store):
        proc = MagicMock()

        async def hang(_stdin):
            await asyncio.sleep(10)

        proc.communicate = hang
        proc.wait = AsyncMock()
        backend = _backend(store, timeout=0.01)

        with patch(
            "ganesh.secrets.backends.pass_store.asyncio.create_subprocess_exec",
            AsyncMock(return_value=proc),
        ):
            assert await backend.resolve("web/site") is None
        proc.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_binary(self, store):
        backend = _backend(store)
        with patch(
            "ganesh.secrets.backends.pass_store.asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("pass")),
        ):
            assert await backend.resolve("web/site") is None


class TestStoreAndList:
    @pytest.mark.asyncio
    async def test_store_uses_stdin(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock(return_value=(0, "", ""))) as run:
            assert await backend.store("ganesh/new", "v1\nextra")
        run.assert_awaited_once_with(
            "insert", "--multiline", "--force", "--", "ganesh/new", stdin=b"v1\nextra"
        )

    @pytest.mark.asyncio
    async def test_store_dash_path_is_not_an_option(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock(return_value=(0, "", ""))) as run:
            await backend.store("-e", "v")
        assert run.await_args.args == ("insert", "--multiline", "--force", "--", "-e")

    @pytest.mark.asyncio
    async def test_store_failure(self, store):
        backend = _backend(store)
        with patch.object(backend, "_run", AsyncMock(return_value=(1, "", "gpg: no key"))):
            assert not await backend.store("ganesh/new", "v")

    @pytest.mark.asyncio
    async def test_list(self, store):
        (store / "ganesh").mkdir()
        (store / "ganesh" / "token.gpg").write_bytes(b"")
        (store / "web.gpg").write_bytes(b"")
        (store / ".git").mkdir()
        (store / ".git" / "junk.gpg").write_bytes(b"")

        backend = _backend(store)
        assert await backend.list() == ["ganesh/token", "web"]
        assert await backend.list("ganesh") == ["ganesh/token"]
        assert await backend.list("nope") == []
