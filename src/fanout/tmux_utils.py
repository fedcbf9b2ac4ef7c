import logging
import subprocess
import time
from typing import Optional

import libtmux
from libtmux import exc

logger = logging.getLogger(__name__)

# Pane content that means the agent CLI is up and waiting for input
READY_INDICATORS = ("> try", "─────", "? for shortcuts")
LOADING_INDICATORS = ("sublimating", "loading")


def find_session(session_name: str) -> Optional[libtmux.Session]:
    """Find tmux session by name, or None (also when tmux or its server is missing)."""
    try:
        sessions = libtmux.Server().sessions
    except (exc.LibTmuxException, OSError) as e:
        logger.debug("tmux server not reachable: %s", e)
        return None

    for session in sessions:
        if session.session_name == session_name:
            return session
    return None


def kill_session(session_name: str) -> bool:
    """
    Kill a session if it exists.

    Returns:
        True if a session was killed
    """
    if not find_session(session_name):
        return False
    result = subprocess.run(
        ['tmux', 'kill-session', '-t', session_name],
        capture_output=True,
        text=True,
        check=False,
    )
    return result.returncode == 0


def kill_window(target: str) -> None:
    """Close a window and whatever runs in it; a missing window is ignored."""
    result = subprocess.run(
        ['tmux', 'kill-window', '-t', target],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        logger.debug("kill-window %s failed: %s", target, result.stderr.strip())


def send_keys(target: str, text: str, enter: bool = True) -> None:
    """Type literal text into a pane, optionally followed by Enter."""
    subprocess.run(['tmux', 'send-keys', '-t', target, '-l', text], check=True)
    if enter:
        subprocess.run(['tmux', 'send-keys', '-t', target, 'Enter'], check=True)


def wait_for_ready(window_target: str, timeout: float = 15.0) -> bool:
    """
    Poll a pane until the agent prompt shows up.

    Args:
        window_target: Tmux target (e.g., "fanout-auth:2")
        timeout: Maximum wait in seconds

    Returns:
        True if a ready indicator appeared, False on timeout
    """
    start = time.time()

    while (time.time() - start) < timeout:
        try:
            result = subprocess.run(
                ["tmux", "capture-pane", "-t", window_target, "-p"],
                capture_output=True,
                text=True,
                timeout=1.0
            )
            output_lower = result.stdout.lower()
            if not any(s in output_lower for s in LOADING_INDICATORS):
                if any(indicator in output_lower for indicator in READY_INDICATORS):
                    return True
        except subprocess.SubprocessError as e:
            logger.debug("capture-pane on %s failed: %s", window_target, e)

        time.sleep(0.1)

    return False
