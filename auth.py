"""Encrypted session persistence and OAuth code exchange."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from errors import ApiCallError, SessionError
from file_util import atomic_write
from models import Workspace

if TYPE_CHECKING:
    from slack_api import SlackApi

logger = logging.getLogger("slackzc.auth")

SESSION_FILE = "session.json"
KEY_FILE = ".secret_key"
SECRET_MODE = 0o600


class Session(BaseModel):
    """Connected workspaces plus the agent bearer token."""

    workspaces: list[Workspace] = Field(default_factory=list)
    agent_bearer: str | None = None

    def add_workspace(self, workspace: Workspace) -> None:
        """Insert *workspace*, replacing any entry with the same team id."""
        for idx, existing in enumerate(self.workspaces):
            if existing.team_id == workspace.team_id:
                self.workspaces[idx] = workspace
                return
        self.workspaces.append(workspace)

    def set_active_workspace(self, team_id: str) -> None:
        for ws in self.workspaces:
            ws.active = ws.team_id == team_id

    def active_workspace(self) -> Workspace | None:
        return next((ws for ws in self.workspaces if ws.active), None)

    def find_workspace(self, team_id: str) -> Workspace | None:
        return next((ws for ws in self.workspaces if ws.team_id == team_id), None)

    def remove_workspace(self, team_id: str) -> bool:
        """Drop *team_id*; returns ``False`` when it was not present.

        Removing the last workspace also forgets the agent bearer;
        otherwise the first remaining workspace becomes active.
        """
        remaining = [ws for ws in self.workspaces if ws.team_id != team_id]
        if len(remaining) == len(self.workspaces):
            return False
        self.workspaces = remaining
        if not remaining:
            self.agent_bearer = None
        elif not any(ws.active for ws in remaining):
            remaining[0].active = True
        return True

    def clear_all(self) -> None:
        self.workspaces.clear()
        self.agent_bearer = None

    def rotate_token(self, team_id: str, user_token: str, app_token: str) -> None:
        """Replace both credentials of *team_id*.

        Raises :class:`~errors.SessionError` when the workspace is unknown.
        """
        ws = self.find_workspace(team_id)
        if ws is None:
            raise SessionError(f"Workspace not found: {team_id}")
        ws.user_token = user_token
        ws.app_token = app_token


class SessionStore:
    """Reads and writes the Fernet-encrypted session under *data_dir*.

    The key lives in a sibling ``.secret_key`` file.  Both files are
    written with mode 0600.  Losing or corrupting either one makes
    :meth:`load` raise :class:`~errors.SessionError`.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    @property
    def session_path(self) -> Path:
        return self._data_dir / SESSION_FILE

    @property
    def key_path(self) -> Path:
        return self._data_dir / KEY_FILE

    def _read_key(self) -> Fernet | None:
        try:
            raw = self.key_path.read_bytes().strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SessionError(f"Cannot read session key: {exc}") from exc
        try:
            return Fernet(raw)
        except ValueError as exc:
            raise SessionError("Session key is corrupt") from exc

    def _get_or_create_key(self) -> Fernet:
        fernet = self._read_key()
        if fernet is not None:
            return fernet
        key = Fernet.generate_key()
        atomic_write(self.key_path, key, mode=SECRET_MODE)
        logger.info("Generated new session key at %s", self.key_path)
        return Fernet(key)

    def load(self) -> Session | None:
        """Decrypt and return the stored session, or ``None`` when there is none."""
        try:
            ciphertext = self.session_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SessionError(f"Cannot read session: {exc}") from exc
        fernet = self._read_key()
        if fernet is None:
            raise SessionError("Session key is missing")
        try:
            plaintext = fernet.decrypt(ciphertext)
        except InvalidToken as exc:
            raise SessionError("Decryption failed: invalid key or corrupted session") from exc
        try:
            return Session.model_validate_json(plaintext)
        except PydanticValidationError as exc:
            raise SessionError("Session contents are invalid") from exc

    def save(self, session: Session) -> None:
        """Encrypt *session* and write it atomically with mode 0600."""
        fernet = self._get_or_create_key()
        ciphertext = fernet.encrypt(session.model_dump_json().encode())
        atomic_write(self.session_path, ciphertext, mode=SECRET_MODE)

    def clear(self) -> None:
        """Delete the stored session (the key is kept)."""
        with contextlib.suppress(FileNotFoundError):
            self.session_path.unlink()


def workspace_from_oauth(data: Mapping[str, Any]) -> Workspace:
    """Build an active :class:`~models.Workspace` from an ``oauth.v2.access`` payload."""
    try:
        team = data["team"]
        authed_user = data["authed_user"]
        workspace = Workspace(
            team_id=team["id"],
            team_name=team.get("name") or "",
            user_token=authed_user["access_token"],
            app_token=data["access_token"],
            user_id=authed_user.get("id"),
            active=True,
        )
    except (KeyError, TypeError, AttributeError, PydanticValidationError) as exc:
        raise ApiCallError(f"OAuth exchange failed: malformed response ({exc})") from exc
    return workspace


async def exchange_oauth_code(
    api: SlackApi,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
) -> Workspace:
    """Trade an OAuth *code* for tokens and return the new workspace."""
    data = await api.exchange_oauth_code(client_id, client_secret, code, redirect_uri)
    workspace = workspace_from_oauth(data)
    logger.info("OAuth completed for team %s", workspace.team_name or workspace.team_id)
    return workspace
