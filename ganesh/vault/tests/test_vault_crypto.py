"""Tests for the age CLI wrapper.

Subprocess plumbing is exercised with coreutils; the real round-trip only
runs where age is installed.
"""

from __future__ import annotations

import shutil
import stat
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from ganesh.vault.crypto import (
    AgeError,
    _run,
    age_installed,
    decrypt_file,
    encrypt_to_file,
    generate_identity,
    recipient_for,
)

needs_age = pytest.mark.skipif(not age_installed(), reason="age not installed")


class TestRun:
    @pytest.mark.asyncio
    async def test_stdout(self):
        assert await _run("cat", stdin=b"hello") == b"hello"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        with pytest.raises(AgeError, match="exited 1"):
            await _run("false")

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(AgeError, match="timed out"):
            await _run("sleep", "5", timeout=0.05)

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with pytest.raises(AgeError):
            await _run("definitely-not-a-real-binary-ganesh")


class TestRecipient:
    @pytest.mark.asyncio
    async def test_parses_recipient(self, tmp_path: Path):
        with patch("ganesh.vault.crypto._run", AsyncMock(return_value=b"age1qqqexample\n")):
            assert await recipient_for(tmp_path / "identity.key") == "age1qqqexample"

    @pytest.mark.asyncio
    async def test_rejects_garbage(self, tmp_path: Path):
        with patch("ganesh.vault.crypto._run", AsyncMock(return_value=b"")):
            with pytest.raises(AgeError):
                await recipient_for(tmp_path / "identity.key")


class TestEncryptToFile:
    @pytest.mark.asyncio
    async def test_atomic_replace(self, tmp_path: Path):
        target = tmp_path / "secrets.age"
        target.write_bytes(b"old")

        async def fake_age(*args, stdin=None, timeout=None):
            out = Path(args[args.index("-o") + 1])
            out.write_bytes(b"new:" + stdin)
            return b""

        with patch("ganesh.vault.crypto._run", side_effect=fake_age):
            await encrypt_to_file(b"data", "age1x", target)

        assert target.read_bytes() == b"new:data"
        assert stat.S_IMODE(target.stat().st_mode) == 0o600
        assert not (tmp_path / ".secrets.age.tmp").exists()

    @pytest.mark.asyncio
    async def test_failure_keeps_original(self, tmp_path: Path):
        target = tmp_path / "secrets.age"
        target.write_bytes(b"old")

        async def failing_age(*args, stdin=None, timeout=None):
            Path(args[args.index("-o") + 1]).write_bytes(b"partial")
            raise AgeError("age exited 1")

        with patch("ganesh.vault.crypto._run", side_effect=failing_age):
            with pytest.raises(AgeError):
                await encrypt_to_file(b"data", "age1x", target)

        assert target.read_bytes() == b"old"
        assert not (tmp_path / ".secrets.age.tmp").exists()


@needs_age
class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_encrypt_decrypt(self, tmp_path: Path):
        identity = tmp_path / "identity.key"
        recipient = await generate_identity(identity)
        assert recipient.startswith("age1")
        assert stat.S_IMODE(identity.stat().st_mode) == 0o600

        blob = tmp_path / "secrets.age"
        await encrypt_to_file(b'{"secrets": {}}', recipient, blob)
        assert b"secrets" not in blob.read_bytes()
        assert await decrypt_file(blob, identity) == b'{"secrets": {}}'

    @pytest.mark.asyncio
    async def test_wrong_identity(self, tmp_path: Path):
        recipient = await generate_identity(tmp_path / "a.key")
        await generate_identity(tmp_path / "b.key")
        blob = tmp_path / "secrets.age"
        await encrypt_to_file(b"x", recipient, blob)
        with pytest.raises(AgeError):
            await decrypt_file(blob, tmp_path / "b.key")


def test_age_installed_matches_path():
    expected = shutil.which("age") is not None and shutil.which("age-keygen") is not None
    assert age_installed() is expected
