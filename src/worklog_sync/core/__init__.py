"""Remote transport shared by the synchronizers and the CLI."""

from .async_utils import run_sync
from .client import GithubClient, RemoteError
from .runner import CommandResult, CommandRunner, JsonResult

__all__ = [
    "CommandResult",
    "CommandRunner",
    "GithubClient",
    "JsonResult",
    "RemoteError",
    "run_sync",
]
