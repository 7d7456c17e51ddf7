import hmac
from typing import Mapping

from cryptography.hazmat.primitives import hashes

from .models import User


def hash_password(password: str) -> str:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(password.encode())
    return digest.finalize().hex()


class CredentialStore:
    def __init__(self, users: Mapping[str, User]):
        self._users = users

    def verify(self, username: str, password: str) -> bool:
        if not isinstance(username, str) or not isinstance(password, str):
            return False
        user = self._users.get(username)
        if user is None or not password:
            return False
        return hmac.compare_digest(user.password, hash_password(password))
