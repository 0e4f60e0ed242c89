import os
import subprocess


def get_version() -> str:
    """
    Returns the current version of the application.
    Priorities:
    1. COMMANDSERVICE_VERSION environment variable (set by the release build)
    2. Git commit hash (if inside a git repo)
    3. Fallback "test"
    """
    env_version = os.getenv("COMMANDSERVICE_VERSION")
    if env_version:
        return env_version

    try:
        cmd = ["git", "rev-parse", "--short", "HEAD"]
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    return "test"
