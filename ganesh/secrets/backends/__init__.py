from ganesh.secrets.backends.base import SecretsBackend
from ganesh.secrets.backends.pass_store import PassBackend

__all__ = ["SecretsBackend", "PassBackend"]
