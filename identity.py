"""Who is counting: a local profile or the web app's signed-in user."""

from __future__ import annotations

import getpass
import logging
from typing import Optional
from urllib.parse import urljoin

import requests

from models import User

logger = logging.getLogger(__name__)


class LocalIdentity:
    def __init__(self, user_id: str = "") -> None:
        self._user = User(id=user_id or getpass.getuser())

    def get_current_user(self) -> Optional[User]:
        return self._user


class HttpIdentity:
    """Asks the server's ``/me`` route who the session cookie belongs to."""

    def __init__(self, server_url: str, session: requests.Session, timeout_s: float = 5.0) -> None:
        self._url = urljoin(server_url.rstrip("/") + "/", "me")
        self._session = session
        self._timeout_s = timeout_s

    def get_current_user(self) -> Optional[User]:
        try:
            response = self._session.get(self._url, timeout=self._timeout_s)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Could not resolve current user: %s", exc)
            return None
        if not data.get("loggedIn"):
            return None
        user = data.get("user") or {}
        email = str(user.get("email", ""))
        if not email:
            return None
        return User(id=email, name=str(user.get("name", "")), email=email)
