"""
Pass (password-store) backend.

Uses the standard Unix password manager ``pass`` to retrieve secrets. Secrets
are GPG-encrypted at rest and decrypted on demand by the ``pass`` binary; this
module only composes argument vectors and reads its output.

See https://www.passwordstore.org/
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path

from ganesh.config import get_config
from ganesh.secrets.backends.base import SecretsBackend
from ganesh.secrets.models import PassBackendConfig, SecretsBackendType

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9_\-/]")
_NOT_FOUND_MARKER = "is not in the password store"


def sanitize_path(secret_path: str) -> str:
    """Strip everything outside ``[A-Za-z0-9_-/]`` from a secret path.

    Leading dashes survive; callers end option parsing with ``--``.
    """
    sanitized = _UNSAFE_PATH_CHARS.sub("", secret_path).strip("/")
    if sanitized != secret_path:
        logger.warning("pass: path sanitized: %r -> %r", secret_path, sanitized)
    return sanitized


def _extract_field(output: str, field: str) -> str | None:
    """Find a ``field: value`` line after the password line."""
    wanted = field.lower()
    for line in output.splitlines()[1:]:
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() == wanted:
            return value.strip() or None
    return None


class PassBackend(SecretsBackend):
    """Resolve secrets through the ``pass`` CLI."""

    name = SecretsBackendType.PASS

    def __init__(self, config: PassBackendConfig | None = None) -> None:
        self.config = config or PassBackendConfig()
        self.store_path = Path(
            self.config.store_path or get_config().password_store_dir
        ).expanduser()

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["PASSWORD_STORE_DIR"] = str(self.store_path)
        if self.config.gpg_opts:
            env["PASSWORD_STORE_GPG_OPTS"] = self.config.gpg_opts
        return env

    async def _run(self, *args: str, stdin: bytes | None = None) -> tuple[int, str, str]:
        """Run ``pass`` with a hard timeout. Raises TimeoutError on expiry."""
        proc = await asyncio.create_subprocess_exec(
            "pass",
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin), timeout=self.config.timeout
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        return (
            proc.returncode or 0,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def is_available(self) -> bool:
        if shutil.which("pass") is None:
            return False
        if not self.store_path.is_dir():
            return False
        # .gpg-id marks an initialized store
        return (self.store_path / ".gpg-id").is_file()

    async def resolve(self, path: str, field: str | None = None) -> str | None:
        safe_path = sanitize_path(path)
        if not safe_path:
            return None

        try:
            code, stdout, stderr = await self._run("show", "--", safe_path)
        except TimeoutError:
            logger.warning("pass: timed out resolving %r after %ss", safe_path, self.config.timeout)
            return None
        except OSError as e:
            logger.error("pass: failed to run for %r: %s", safe_path, e)
            return None

        if code != 0:
            if _NOT_FOUND_MARKER in stderr:
                logger.debug("pass: %r not found", safe_path)
            else:
                logger.error("pass: failed to resolve %r: %s", safe_path, stderr.strip())
            return None

        if field:
            return _extract_field(stdout, field)

        # pass convention: the first line is the secret
        first_line = stdout.split("\n", 1)[0].strip()
        return first_line or None

    async def store(self, path: str, value: str) -> bool:
        safe_path = sanitize_path(path)
        if not safe_path:
            return False

        try:
            code, _, stderr = await self._run(
                "insert", "--multiline", "--force", "--", safe_path, stdin=value.encode("utf-8")
            )
        except TimeoutError:
            logger.warning("pass: timed out storing %r", safe_path)
            return False
        except OSError as e:
            logger.error("pass: failed to run for %r: %s", safe_path, e)
            return False

        if code != 0:
            logger.error("pass: failed to store %r: %s", safe_path, stderr.strip())
            return False
        return True

    async def list(self, prefix: str | None = None) -> list[str]:
        root = self.store_path
        if prefix:
            root = root / sanitize_path(prefix)
        if not root.is_dir():
            return []
        return sorted(
            entry.relative_to(self.store_path).with_suffix("").as_posix()
            for entry in root.rglob("*.gpg")
            if not any(part.startswith(".") for part in entry.relative_to(self.store_path).parts)
        )
