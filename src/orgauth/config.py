"""Where orgauth keeps its files, and how login settings are resolved.

Three sources of settings feed a login:

* the user config, ``config.json`` in :func:`get_config_dir`, holding
  personal defaults (:class:`~orgauth.models.GlobalConfig`);
* the project file, ``orgauth-project.json`` in the working directory,
  read through :class:`ProjectConfig` (``oauthLocalPort``, ``loginUrl``,
  ``clientId``);
* ``ORGAUTH_*`` environment variables and CLI flags.

:func:`resolve_oauth_config` merges them. Credentials and crash logs go
under :func:`get_data_dir`. On Linux and the BSDs both directories follow
the XDG base directory layout; elsewhere they live under ``~/.orgauth``.
Files are replaced atomically by :func:`atomic_write`.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from orgauth.env import Env
from orgauth.exceptions import ConfigError
from orgauth.models import GlobalConfig, OAuthConfig

_APP_NAME = "orgauth"
USER_CONFIG_FILENAME = "config.json"
PROJECT_CONFIG_FILENAME = "orgauth-project.json"

# (environment variable, path under $HOME when unset, subdirectory of ~/.orgauth)
_DIR_LAYOUT = {
    "config": ("XDG_CONFIG_HOME", (".config",), ""),
    "data": ("XDG_DATA_HOME", (".local", "share"), "data"),
}


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    env_var, home_segments, fallback_sub = _DIR_LAYOUT[kind]
    if _is_xdg_platform():
        root = os.environ.get(env_var) or str(Path.home().joinpath(*home_segments))
        path = Path(root) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if fallback_sub:
            path = path / fallback_sub
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory of the user config, created on demand.

    ``$XDG_CONFIG_HOME/orgauth`` (default ``~/.config/orgauth``) on
    Linux/BSD, ``~/.orgauth`` elsewhere.
    """
    return _app_dir("config")


def get_data_dir() -> Path:
    """Directory for credentials and crash logs, created on demand.

    ``$XDG_DATA_HOME/orgauth`` (default ``~/.local/share/orgauth``) on
    Linux/BSD, ``~/.orgauth/data`` elsewhere.
    """
    return _app_dir("data")


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* so readers see the old or new file, never half of one.

    The content goes to a sibling temp file which is fsynced and renamed
    over *path*. *mode* is set on the temp file before anything is written
    to it, so a credential is never readable by others even briefly. The
    temp file is removed if anything fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    try:
        with tmp:
            if mode is not None:
                os.chmod(tmp.name, mode)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        try:
            os.unlink(tmp.name)
        except OSError:
            pass
        raise


def _read_json(path: Path, what: str) -> Any:  # noqa: ANN401
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Invalid {what} at {path}: {exc}") from exc


def _user_config_path() -> Path:
    return get_config_dir() / USER_CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Read the user config, or return defaults when there is none.

    Raises:
        ConfigError: The file is not valid JSON or does not match
            :class:`~orgauth.models.GlobalConfig`.
    """
    path = _user_config_path()
    if not path.is_file():
        return GlobalConfig()
    data = _read_json(path, "global config")
    try:
        return GlobalConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def load_project_config(directory: Optional[Path] = None) -> Optional[dict[str, Any]]:
    """Read ``orgauth-project.json`` from *directory* (default: the working directory).

    Returns:
        The file's JSON object, or ``None`` when there is no such file.

    Raises:
        ConfigError: The file is not valid JSON or not a JSON object.
    """
    path = (directory or Path.cwd()) / PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    data = _read_json(path, "project config")
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid project config at {path}: expected a JSON object")
    return data


class ProjectConfig:
    """Read-only view over the project's ``orgauth-project.json``.

    Args:
        contents: Pre-parsed contents. When omitted, the file is read from
            the working directory on first access.

    Example::

        port = ProjectConfig().get("oauthLocalPort")
    """

    def __init__(self, contents: Optional[dict[str, Any]] = None) -> None:
        self._contents = contents

    def get(self, key: str) -> Any:  # noqa: ANN401
        if self._contents is None:
            self._contents = load_project_config() or {}
        return self._contents.get(key)


def resolve_oauth_config(
    cli_login_url: Optional[str] = None,
    cli_client_id: Optional[str] = None,
    project: Optional[ProjectConfig] = None,
    env: Optional[Env] = None,
) -> OAuthConfig:
    """Build the :class:`~orgauth.models.OAuthConfig` for a login attempt.

    Each setting takes the first non-empty string from, in order: the CLI
    flag, ``ORGAUTH_LOGIN_URL`` / ``ORGAUTH_CLIENT_ID``, the project keys
    ``loginUrl`` / ``clientId``, the user config, and the built-in default.
    ``client_secret`` is only ever read from ``ORGAUTH_CLIENT_SECRET``.
    """
    env = env or Env()
    project = project or ProjectConfig()
    user = load_global_config()
    defaults = OAuthConfig()

    def first(*candidates: Any) -> Any:  # noqa: ANN401
        return next(c for c in candidates if isinstance(c, str) and c)

    return OAuthConfig(
        login_url=first(
            cli_login_url,
            env.get_string("ORGAUTH_LOGIN_URL"),
            project.get("loginUrl"),
            user.login_url,
            defaults.login_url,
        ),
        client_id=first(
            cli_client_id,
            env.get_string("ORGAUTH_CLIENT_ID"),
            project.get("clientId"),
            user.client_id,
            defaults.client_id,
        ),
        client_secret=env.get_string("ORGAUTH_CLIENT_SECRET"),
    )
