from typing import Any, Dict, Optional

MAX_DETAIL_CHARS = 2000


def clip_text(value: Any, limit: int = MAX_DETAIL_CHARS) -> Optional[str]:
    """Trim and cap a diagnostic string; non-strings and blanks become None."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) <= limit:
        return normalized
    return f"{normalized[:limit]}…"


class AppStoreError(Exception):
    stage = "unknown"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}


class ValidationError(AppStoreError):
    stage = "validation"


class DependencyError(AppStoreError):
    stage = "dependencies"

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            f"Missing dependencies: {', '.join(self.missing)}",
            {"missing": self.missing},
        )


class ComposeResolutionError(AppStoreError):
    stage = "compose:resolve"


class EngineError(AppStoreError):
    """A compose or container command failed.

    ``details`` carries the clipped command, exit code, signal and the
    captured stdout/stderr of the failing process.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        cmd: Any = None,
        code: Optional[int] = None,
        signal: Optional[int] = None,
        stdout: Any = None,
        stderr: Any = None,
        **extra: Any,
    ):
        details = {
            "cmd": clip_text(" ".join(cmd) if isinstance(cmd, (list, tuple)) else cmd),
            "code": code,
            "signal": signal,
            "stdout": clip_text(stdout),
            "stderr": clip_text(stderr),
        }
        details.update(extra)
        super().__init__(message, details)
        self.stage = stage
        self.code = code
        self.stdout = details["stdout"]
        self.stderr = details["stderr"]


class HealthCheckError(AppStoreError):
    stage = "health"


def summarize_failure(stage: str, fallback: str, details: Dict[str, Any]) -> str:
    """Map well-known engine output to a message a user can act on."""
    combined = "\n".join(
        str(details.get(key) or "") for key in ("stderr", "stdout")
    ).lower()

    if stage == "compose:pull":
        if "toomanyrequests" in combined:
            return "Docker registry rate limit reached. Try again later or use authenticated pulls."
        if (
            "pull access denied" in combined
            or "requested access to the resource is denied" in combined
            or "unauthorized" in combined
        ):
            return "Docker image access denied. Check registry visibility or authentication."
        if "no matching manifest for" in combined:
            return "Docker image does not support this CPU architecture."
        if "manifest unknown" in combined or "not found" in combined:
            return "Docker image tag/digest not found in registry."
        if "i/o timeout" in combined or "tls handshake timeout" in combined:
            return "Docker registry network timeout. Check internet/DNS and retry."

    if stage == "compose:up":
        if "is a directory" in combined and "entrypoint.sh" in combined:
            return (
                "Container start failed because /entrypoint.sh was mounted "
                "from a directory instead of a file."
            )

    return fallback
