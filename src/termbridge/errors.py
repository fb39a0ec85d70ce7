"""termbridge exceptions.

PUBLIC API:
  - TermBridgeError: Base exception for everything raised by termbridge
  - ValidationError: Caller arguments are missing or malformed
  - ResolutionError: A local window/tab/pane identifier could not be resolved
  - BridgeError: Base exception for failures of a bridge invocation
"""


class TermBridgeError(Exception):
    """Base exception for all termbridge operations."""

    pass


# === Validation ===


class ValidationError(TermBridgeError):
    """Raised when a tool argument is missing or has the wrong shape."""

    pass


# === Resolution ===


class ResolutionError(TermBridgeError):
    """Raised when the tracker cannot resolve an identifier."""

    pass


class PaneNotFoundError(ResolutionError):
    """Raised when a local pane id is unknown to the tracker."""

    def __init__(self, pane_id: str):
        super().__init__(f"Pane {pane_id} not found")
        self.pane_id = pane_id


class TabNotFoundError(ResolutionError):
    """Raised when a local tab id is unknown to the tracker."""

    def __init__(self, tab_id: str):
        super().__init__(f"Tab {tab_id} not found")
        self.tab_id = tab_id


class WindowNotFoundError(ResolutionError):
    """Raised when a local window id is unknown to the tracker."""

    def __init__(self, window_id: str):
        super().__init__(f"Window {window_id} not found")
        self.window_id = window_id


class NoActivePaneError(ResolutionError):
    """Raised when no pane is flagged active and none was given."""

    def __init__(self):
        super().__init__("No active pane found")


class NoValidPanesError(ResolutionError):
    """Raised when none of the requested pane ids are known."""

    def __init__(self):
        super().__init__("No valid panes found")


# === Bridge ===


class BridgeError(TermBridgeError):
    """Base exception for bridge invocations."""

    pass


class BridgeSpawnError(BridgeError):
    """Raised when the bridge interpreter cannot be started."""

    pass


class BridgeTimeoutError(BridgeError):
    """Raised when the bridge script exceeds its time budget."""

    pass


class BridgeConnectionError(BridgeError):
    """Raised when the bridge script cannot reach the iTerm2 API."""

    pass


class BridgeExitError(BridgeError):
    """Raised when the bridge script exits with a non-zero status."""

    def __init__(
        self,
        returncode: int,
        stderr: str = "",
        reason: str | None = None,
        error_type: str | None = None,
        traceback: str | None = None,
    ):
        detail = reason or stderr.strip() or "no output"
        super().__init__(f"Python execution failed (exit {returncode}): {detail}")
        self.returncode = returncode
        self.stderr = stderr
        self.reason = reason
        self.error_type = error_type
        self.traceback = traceback


class BridgeProtocolError(BridgeError):
    """Raised when the bridge output is not the expected JSON payload."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class BridgeDomainError(BridgeError):
    """Raised when iTerm2 itself reports a failure (e.g. session not found)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
