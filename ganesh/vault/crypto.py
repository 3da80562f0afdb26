"""
age encryption via the ``age`` / ``age-keygen`` command-line tools.

No cryptography happens in-process: identities, recipients and ciphertext are
produced and consumed by the external binaries, with a hard timeout per call.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class AgeError(RuntimeError):
    """An age invocation failed or timed out."""


def age_installed() -> bool:
    return shutil.which("age") is not None and shutil.which("age-keygen") is not None


async def _run(*args: str, stdin: bytes | None = None, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise AgeError(f"{args[0]}: {e}") from e
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise AgeError(f"{args[0]} timed out after {timeout}s") from None
    if proc.returncode != 0:
        raise AgeError(f"{args[0]} exited {proc.returncode}: {stderr.decode(errors='replace').strip()}")
    return stdout


async def generate_identity(path: Path, *, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Create a new identity file at ``path`` (0600). Returns its recipient."""
    await _run("age-keygen", "-o", str(path), timeout=timeout)
    path.chmod(0o600)
    return await recipient_for(path, timeout=timeout)


async def recipient_for(identity_path: Path, *, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Derive the public recipient (``age1...``) for an identity file."""
    out = await _run("age-keygen", "-y", str(identity_path), timeout=timeout)
    recipient = out.decode().strip().splitlines()[0] if out.strip() else ""
    if not recipient.startswith("age1"):
        raise AgeError("age-keygen -y produced no recipient")
    return recipient


async def decrypt_file(
    path: Path, identity_path: Path, *, timeout: float = DEFAULT_TIMEOUT
) -> bytes:
    return await _run("age", "--decrypt", "-i", str(identity_path), str(path), timeout=timeout)


async def encrypt_to_file(
    data: bytes, recipient: str, path: Path, *, timeout: float = DEFAULT_TIMEOUT
) -> None:
    """Encrypt ``data`` for ``recipient`` and atomically replace ``path``."""
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        await _run("age", "-r", recipient, "-o", str(tmp), stdin=data, timeout=timeout)
        tmp.chmod(0o600)
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)
