import subprocess

# Overwritten during the build/release process
__version__ = "test"


def get_version() -> str:
    """
    Returns the current version of appdeck.

    An explicitly set ``__version__`` wins; otherwise the short git commit
    hash is used when available, falling back to "test".
    """
    if __version__ != "test":
        return __version__

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    return "test"
