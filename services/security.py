"""Password hashing capability backed by Argon2."""

from __future__ import annotations

from argon2 import PasswordHasher, exceptions as argon_exc


class PasswordHashingError(RuntimeError):
    """Raised when the hashing backend cannot process a hash or password."""


class Argon2PasswordHasher:
    """Hash/verify pair handed to the services that need credentials.

    A mismatch is reported as ``False``; a malformed stored hash or any other
    backend failure raises :class:`PasswordHashingError` so callers never
    mistake a broken record for a wrong password.
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._ph = hasher or PasswordHasher()

    def hash(self, plain_text: str) -> str:
        if not plain_text:
            raise ValueError("Password must not be empty")
        try:
            return self._ph.hash(plain_text)
        except argon_exc.HashingError as exc:
            raise PasswordHashingError("Unable to hash password") from exc

    def verify(self, plain_text: str, hashed: str) -> bool:
        if not plain_text or not hashed:
            return False
        try:
            return self._ph.verify(hashed, plain_text)
        except argon_exc.VerifyMismatchError:
            return False
        except (argon_exc.VerificationError, argon_exc.InvalidHashError) as exc:
            raise PasswordHashingError("Stored password hash could not be verified") from exc


password_hasher = Argon2PasswordHasher()
