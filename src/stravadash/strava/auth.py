"""
Strava OAuth credential persistence.

All credentials live in one JSON file keyed by API client id, in the layout
existing dashboard installs already use:

    {
        "12345": {
            "token": {
                "token_type": "Bearer",
                "access_token": "...",
                "refresh_token": "...",
                "expires_at": 1700000000,
                "athlete_id": 987654
            }
        }
    }

The file is the only source of truth. It is rewritten whole (temp file +
rename) and writes are serialized with an asyncio.Lock, so a refresh from
one sync cycle can never interleave with an OAuth exchange from the HTTP
routes. A missing or corrupt file reads as an empty store.
"""
import asyncio
import logging
import os
import stat
import time
from pathlib import Path
from typing import Dict, Optional, Union

import httpx
from pydantic import ValidationError

from stravadash.models.token import Credential, Token
from stravadash.storage import read_json, write_json_atomic
from stravadash.strava.client import StravaClient, StravaOAuthError

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

TOKENS_FILE_DEFAULT = Path.home() / ".stravadash" / "tokens.json"


# ── Exceptions ────────────────────────────────────────────────────────────────

class TokenNotFoundError(RuntimeError):
    """Raised when no credential is stored for a client id."""


class TokenRefreshError(RuntimeError):
    """Raised when Strava refuses to refresh a stored credential."""


# ── Main class ────────────────────────────────────────────────────────────────

class TokenStore:
    """
    Reads and writes the credentials file.

    Usage:
        store = TokenStore(settings.tokens_file)
        token = store.get_token(client_id)
        token = await store.refresh(client_id, client_secret, strava_client)
    """

    def __init__(self, path: Path = TOKENS_FILE_DEFAULT):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ── Persistence ───────────────────────────────────────────────────────────

    def load(self) -> Dict[str, Token]:
        """Return every stored token keyed by client id. Bad entries are skipped."""
        raw = read_json(self._path, {})
        if not isinstance(raw, dict):
            logger.warning("Credentials file %s is not a mapping; ignoring", self._path)
            return {}

        tokens: Dict[str, Token] = {}
        for client_id, record in raw.items():
            try:
                tokens[str(client_id)] = Token.model_validate((record or {}).get("token"))
            except (AttributeError, ValidationError) as exc:
                logger.warning("Skipping malformed credential for %s: %s", client_id, exc)
        return tokens

    def has_token(self, client_id: str) -> bool:
        return str(client_id) in self.load()

    def get_token(self, client_id: str) -> Token:
        """
        Raises:
            TokenNotFoundError: if the client id has never been authorised.
        """
        token = self.load().get(str(client_id))
        if token is None:
            raise TokenNotFoundError(
                f"No Strava credential stored for client id {client_id}. "
                "Visit /strava/auth/ to authorise."
            )
        return token

    def get_credential(self, client_id: str) -> Credential:
        return Credential(client_id=str(client_id), token=self.get_token(client_id))

    async def save_token(
        self,
        client_id: str,
        token: Optional[Union[Token, dict]],
    ) -> Dict[str, Token]:
        """
        Store (or with token=None, remove) the credential for a client id.

        Returns the full token mapping as written.
        """
        client_id = str(client_id)
        async with self._lock:
            tokens = self.load()
            if token is None:
                tokens.pop(client_id, None)
                logger.info("Removed credential for client %s", client_id)
            else:
                tokens[client_id] = (
                    token if isinstance(token, Token) else Token.model_validate(token)
                )
            self._write(tokens)
        return tokens

    def _write(self, tokens: Dict[str, Token]) -> None:
        """
        Directory: 0700 (rwx------)
        File:      0600 (rw-------)
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self._path.parent, stat.S_IRWXU)
        write_json_atomic(
            self._path,
            {cid: {"token": t.model_dump()} for cid, t in tokens.items()},
            mode=stat.S_IRUSR | stat.S_IWUSR,
            indent=2,
        )

    # ── Refresh ───────────────────────────────────────────────────────────────

    async def refresh(
        self,
        client_id: str,
        client_secret: str,
        oauth: StravaClient,
    ) -> Token:
        """
        Exchange the stored refresh token for a new access token and persist it.

        Fields missing from the response keep their stored values.

        Raises:
            TokenNotFoundError: if nothing is stored for the client id.
            TokenRefreshError: if Strava rejects the refresh or is unreachable.
        """
        current = self.get_token(client_id)
        logger.info("Refreshing tokens for client %s", client_id)
        try:
            data = await oauth.refresh_token(client_id, client_secret, current.refresh_token)
        except (StravaOAuthError, httpx.HTTPError) as exc:
            raise TokenRefreshError(
                "Failed to refresh tokens. Check config or module authorisation."
            ) from exc

        updates = {
            key: data[key]
            for key in ("token_type", "access_token", "refresh_token", "expires_at")
            if data.get(key)
        }
        token = current.model_copy(update=updates)
        await self.save_token(client_id, token)
        return token

    async def get_valid_token(
        self,
        client_id: str,
        client_secret: str,
        oauth: StravaClient,
        *,
        margin: int = 300,
        now: Optional[float] = None,
    ) -> Token:
        """Return the stored token, refreshing it first if it expires within `margin` seconds."""
        token = self.get_token(client_id)
        now = time.time() if now is None else now
        if token.is_expiring(now, margin):
            return await self.refresh(client_id, client_secret, oauth)
        return token
