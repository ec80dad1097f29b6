"""Runtime configuration for worklog-sync.

Reads settings from CLI args, environment variables, .env files, and YAML
config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    WORKLOG_GITHUB_REPO: Target repository as ``owner/name``
    WORKLOG_LABEL_PREFIX: Label namespace prefix (default: ``wl:``)
    WORKLOG_MAX_RETRIES: Rate-limit retries per call (default: 3)
    WORKLOG_COMMAND_TIMEOUT: Per-call timeout in seconds (default: 60)
    WORKLOG_GIT_REMOTE: Remote holding the shared snapshot (default: origin)
    WORKLOG_GIT_BRANCH: Ref holding the shared snapshot
        (default: refs/worklog/data)
    WORKLOG_DATA_FILE: Local snapshot file (default:
        .worklog/worklog-data.jsonl)
    WORKLOG_ID_PREFIX: Prefix for generated ids (default: WL)
"""

import logging
import os
import re
from dataclasses import dataclass

from .sync.labels import DEFAULT_LABEL_PREFIX, normalize_label_prefix

logger = logging.getLogger(__name__)

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


@dataclass
class SyncConfig:
    repo: str = ""
    label_prefix: str = DEFAULT_LABEL_PREFIX
    max_retries: int = 3
    retry_initial_delay: float = 0.5
    command_timeout: float = 60.0
    gh_binary: str = "gh"
    git_remote: str = "origin"
    git_branch: str = "refs/worklog/data"
    data_file: str = ".worklog/worklog-data.jsonl"
    id_prefix: str = "WL"
    debug: bool = False


def validate_config(config: SyncConfig, require_repo: bool = False) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: SyncConfig instance to validate.  The label prefix is
            normalised in place.
        require_repo: Whether a repository slug must be present (any
            operation that talks to the tracker).

    Raises:
        ValueError: If the repo slug is missing or malformed, or a numeric
            setting is out of range.
    """
    config.repo = config.repo.strip()
    if config.repo and not _REPO_RE.match(config.repo):
        raise ValueError(
            f"Invalid repository '{config.repo}': expected owner/name"
        )
    if require_repo and not config.repo:
        raise ValueError(
            "GitHub repository not configured. Set WORKLOG_GITHUB_REPO, "
            "pass --repo, or add 'github.repo' to config.yml."
        )

    config.label_prefix = normalize_label_prefix(config.label_prefix)

    if not (0 <= config.max_retries <= 10):
        raise ValueError(
            f"Invalid max_retries {config.max_retries}: must be between 0 and 10"
        )
    if config.retry_initial_delay < 0:
        raise ValueError(
            f"Invalid retry_initial_delay {config.retry_initial_delay}: "
            "must not be negative"
        )
    if config.command_timeout <= 0:
        raise ValueError(
            f"Invalid command_timeout {config.command_timeout}: must be positive"
        )
    if not config.id_prefix.strip():
        raise ValueError("id_prefix cannot be empty")


def _number_setting(
    env_key: str,
    fb: dict,
    fb_key: str,
    default: float,
    cast: type,
):
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            return cast(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number"
            ) from None
    if fb_key in fb:
        return cast(fb[fb_key])
    return default


def load_config(
    repo: str | None = None,
    label_prefix: str | None = None,
    data_file: str | None = None,
    git_remote: str | None = None,
    git_branch: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> SyncConfig:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        repo: Override repository slug.
        label_prefix: Override label prefix.
        data_file: Override local snapshot path.
        git_remote: Override snapshot remote.
        git_branch: Override snapshot ref.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file.

    Returns:
        Validated SyncConfig instance.  The repo may still be empty; callers
        that need it validate again with ``require_repo=True``.

    Raises:
        ValueError: If a value is malformed.
    """
    fb = yaml_fallbacks or {}
    defaults = SyncConfig()

    def pick(override: str | None, env_key: str, fb_key: str, default: str) -> str:
        return override or os.getenv(env_key) or fb.get(fb_key) or default

    config = SyncConfig(
        repo=pick(repo, "WORKLOG_GITHUB_REPO", "repo", ""),
        label_prefix=pick(
            label_prefix,
            "WORKLOG_LABEL_PREFIX",
            "label_prefix",
            defaults.label_prefix,
        ),
        max_retries=_number_setting(
            "WORKLOG_MAX_RETRIES", fb, "max_retries", defaults.max_retries, int
        ),
        retry_initial_delay=float(
            fb.get("retry_initial_delay", defaults.retry_initial_delay)
        ),
        command_timeout=_number_setting(
            "WORKLOG_COMMAND_TIMEOUT",
            fb,
            "command_timeout",
            defaults.command_timeout,
            float,
        ),
        gh_binary=fb.get("gh_binary") or defaults.gh_binary,
        git_remote=pick(
            git_remote, "WORKLOG_GIT_REMOTE", "git_remote", defaults.git_remote
        ),
        git_branch=pick(
            git_branch, "WORKLOG_GIT_BRANCH", "git_branch", defaults.git_branch
        ),
        data_file=pick(
            data_file, "WORKLOG_DATA_FILE", "data_file", defaults.data_file
        ),
        id_prefix=pick(
            None, "WORKLOG_ID_PREFIX", "id_prefix", defaults.id_prefix
        ),
        debug=debug or bool(fb.get("debug", False)),
    )

    validate_config(config)
    return config
