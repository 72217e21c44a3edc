"""Client configuration read from the environment."""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from chat_common.messages import UserId

from .connection_manager import ReconnectPolicy

DEFAULT_LOGFILE_PATH = Path.home() / ".chat_client.log"


class ChatConfigError(Exception):
    """Missing or invalid configuration value."""

    ...


@dataclass(frozen=True)
class ClientConfig:
    """Settings of a chat client process."""

    server_url: str
    api_url: str
    token: str
    user_id: UserId
    reconnect_policy: ReconnectPolicy
    logfile_path: str = str(DEFAULT_LOGFILE_PATH)
    logfile_capacity_kb: int = 1024
    debug: bool = False

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "ClientConfig":
        """Read the configuration from environment variables."""
        env = os.environ if environ is None else environ

        token = _required(env, "CHAT_TOKEN")
        raw_user_id = env.get("CHAT_USER_ID")
        if raw_user_id:
            user_id: UserId = _parse_user_id(raw_user_id)
        else:
            user_id = user_id_from_token(token)

        max_interval = env.get("CHAT_RECONNECT_MAX_INTERVAL_S")
        max_retries = env.get("CHAT_RECONNECT_MAX_RETRIES")
        policy = ReconnectPolicy(
            interval=_number(env, "CHAT_RECONNECT_INTERVAL_S", 3.0),
            backoff_factor=_number(env, "CHAT_RECONNECT_BACKOFF", 1.0),
            max_interval=(
                _number(env, "CHAT_RECONNECT_MAX_INTERVAL_S", 0.0)
                if max_interval
                else None
            ),
            max_retries=(
                int(_number(env, "CHAT_RECONNECT_MAX_RETRIES", 0))
                if max_retries
                else None
            ),
        )

        return cls(
            server_url=_required(env, "CHAT_SERVER_URL").rstrip("/"),
            api_url=_required(env, "CHAT_API_URL").rstrip("/"),
            token=token,
            user_id=user_id,
            reconnect_policy=policy,
            logfile_path=env.get("CHAT_CLIENT_LOGFILE_PATH")
            or str(DEFAULT_LOGFILE_PATH),
            logfile_capacity_kb=int(
                _number(env, "CHAT_CLIENT_LOGFILE_CAPACITY_KB", 1024)
            ),
            debug=bool(env.get("CHAT_CLIENT_DEBUG")),
        )


def user_id_from_token(token: str) -> UserId:
    """Read the `sub` claim of a JWT without verifying it."""
    try:
        encoded = token.split(".")[1]
        padded = encoded + "=" * (-len(encoded) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded))
        subject = claims["sub"]
    except (IndexError, KeyError, TypeError, ValueError, binascii.Error):
        raise ChatConfigError(
            "CHAT_USER_ID not set and the token carries no subject"
        )
    return _parse_user_id(str(subject))


def _parse_user_id(raw: str) -> UserId:
    return int(raw) if raw.isdigit() else raw


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if not value:
        raise ChatConfigError(f"Missing environment variable {name}")
    return value


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ChatConfigError(f"{name} is not a number: {raw!r}")
    if value < 0:
        raise ChatConfigError(f"{name} must not be negative")
    return value
