import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests import exceptions as requests_exceptions


LEMMY_API_PATH = "api/v3/ws"
CREDENTIALS_PATH = Path.home() / ".config" / "lemmybot" / "credentials.json"


def secure_websocket_url(instance: str) -> str:
    return f"wss://{normalize_instance(instance)}/{LEMMY_API_PATH}"


def insecure_websocket_url(instance: str) -> str:
    return f"ws://{normalize_instance(instance)}/{LEMMY_API_PATH}"


def normalize_instance(value: Any) -> str:
    text = str(value or "").strip().lower()
    for prefix in ("https://", "http://", "wss://", "ws://"):
        if text.startswith(prefix):
            text = text[len(prefix):]
    return text.strip("/")


def strip_port(instance: str) -> str:
    return normalize_instance(instance).split(":", 1)[0]


def build_request(op: str, data: Optional[Dict[str, Any]] = None) -> str:
    """Serialize one outbound websocket frame."""
    payload = {key: value for key, value in (data or {}).items() if value is not None}
    return json.dumps({"op": op, "data": payload})


class LemmyAuthError(Exception):
    pass


class NotConnectedError(RuntimeError):
    pass


@dataclass
class LemmyCredentials:
    username: str
    password: str
    source: str = "unknown"

    @classmethod
    def load(cls) -> Optional["LemmyCredentials"]:
        """Load credentials from env or ~/.config/lemmybot/credentials.json.

        Priority:
        1. LEMMY_USERNAME / LEMMY_PASSWORD env vars
        2. credentials.json file

        Returns None when neither is present; the bot then runs read-only.
        """
        username = os.getenv("LEMMY_USERNAME", "").strip()
        password = os.getenv("LEMMY_PASSWORD", "")
        if username or password:
            if not (username and password):
                raise LemmyAuthError("Set both LEMMY_USERNAME and LEMMY_PASSWORD, or neither.")
            return cls(username=username, password=password, source="env:LEMMY_USERNAME")
        return cls.load_from_file()

    @classmethod
    def load_from_file(cls) -> Optional["LemmyCredentials"]:
        if not CREDENTIALS_PATH.exists():
            return None
        with CREDENTIALS_PATH.open("r", encoding="utf-8") as f:
            data = json.load(f)
        username = str(data.get("username") or "").strip()
        password = str(data.get("password") or "")
        if not username or not password:
            raise LemmyAuthError(
                f"{CREDENTIALS_PATH} must contain both 'username' and 'password' fields."
            )
        return cls(username=username, password=password, source=f"file:{CREDENTIALS_PATH}")


class LemmyHttpClient:
    """HTTP side channel for the operations the websocket API does not carry.

    SECURITY: the session jwt is only ever sent to the bot's own instance.
    """

    def __init__(self, instance: str, secure: bool = True):
        self.instance = normalize_instance(instance)
        self.scheme = "https" if secure else "http"

    def _url(self, path: str) -> str:
        path = path.lstrip("/")
        return f"{self.scheme}://{self.instance}/{path}"

    def upload_image(self, image: bytes, auth: str) -> Dict[str, Any]:
        if not image:
            raise ValueError("image must not be empty")
        if not auth:
            raise LemmyAuthError("Must log in before uploading images.")
        try:
            resp = requests.post(
                self._url("pictrs/image"),
                files={"images[]": image},
                cookies={"jwt": auth},
                timeout=60,
            )
        except requests_exceptions.Timeout as e:
            raise RuntimeError(
                f"Timed out while uploading an image to {self.instance}. "
                "The instance may be slow or temporarily unavailable."
            ) from e

        if resp.status_code in {401, 403}:
            raise LemmyAuthError(f"Lemmy auth error {resp.status_code} while uploading image")

        if resp.status_code >= 400:
            try:
                data = resp.json()
            except Exception:
                resp.raise_for_status()
            message = data.get("msg") or data.get("error") or resp.text
            raise RuntimeError(f"Lemmy error {resp.status_code}: {message}")

        data = resp.json()
        files = data.get("files") or []
        if data.get("msg") == "ok" and files:
            file_name = files[0].get("file")
            delete_token = files[0].get("delete_token")
            data["url"] = self._url(f"pictrs/image/{file_name}")
            data["delete_url"] = self._url(f"pictrs/image/delete/{delete_token}/{file_name}")
        return data
