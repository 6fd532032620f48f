"""Best-effort lookup of the terminal tab hosting an agent process (macOS iTerm2)."""

import logging
import shutil
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)

# Returns the name of the iTerm2 session attached to the given tty, or ""
ITERM_TITLE_SCRIPT = '''
on run argv
    set targetTty to item 1 of argv
    tell application "iTerm2"
        repeat with w in windows
            repeat with t in tabs of w
                repeat with s in sessions of t
                    if tty of s is targetTty then return name of s
                end repeat
            end repeat
        end repeat
    end tell
    return ""
end run
'''


class TabTitleResolver:
    """Resolves agent pid -> terminal tab title. Returns None whenever unsure."""

    def __init__(self, timeout: float = 3.0):
        self.timeout = timeout

    def _run(self, *cmd: str) -> Optional[str]:
        try:
            result = subprocess.run(
                list(cmd), capture_output=True, text=True, timeout=self.timeout, check=True
            )
        except subprocess.CalledProcessError as e:
            logger.debug(f"{cmd[0]} failed: {e.stderr}")
            return None
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"{cmd[0]} did not complete: {e}")
            return None
        return result.stdout.strip()

    def tty_for_pid(self, pid: int) -> Optional[str]:
        """Controlling terminal of a process, e.g. ``/dev/ttys003``."""
        tty = self._run("ps", "-o", "tty=", "-p", str(pid))
        if not tty or tty in ("?", "??"):
            return None
        return tty if tty.startswith("/dev/") else f"/dev/{tty}"

    def resolve(self, pid: int) -> Optional[str]:
        """Tab title for the process, or None."""
        if not shutil.which("osascript"):
            return None
        tty = self.tty_for_pid(pid)
        if not tty:
            return None
        title = self._run("osascript", "-e", ITERM_TITLE_SCRIPT, tty)
        return title or None
