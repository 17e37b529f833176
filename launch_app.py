from __future__ import annotations

import hashlib
import os
import subprocess
import sys
import venv
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent
VENV_DIR = PROJECT_ROOT / ".venv"
PROJECT_FILE = PROJECT_ROOT / "pyproject.toml"
INSTALL_MARKER = VENV_DIR / ".project.installed"
APP_DIR = PROJECT_ROOT / "app"


def venv_python() -> Path:
    if os.name == "nt":
        return VENV_DIR / "Scripts" / "python.exe"
    return VENV_DIR / "bin" / "python"


def ensure_virtualenv() -> None:
    if VENV_DIR.exists() and venv_python().exists():
        return

    print(f"[launcher] Creating virtual environment at {VENV_DIR}...")
    builder = venv.EnvBuilder(with_pip=True, upgrade=False, clear=False)
    builder.create(VENV_DIR)


def current_project_signature() -> str:
    if not PROJECT_FILE.exists():
        raise FileNotFoundError(f"Project file not found: {PROJECT_FILE}")
    return hashlib.sha256(PROJECT_FILE.read_bytes()).hexdigest()


def ensure_installed() -> None:
    python_exec = venv_python()
    signature = current_project_signature()

    if INSTALL_MARKER.exists() and INSTALL_MARKER.read_text().strip() == signature:
        print("[launcher] Dependencies satisfied.")
        return

    print(f"[launcher] Installing {PROJECT_ROOT.name} and its dependencies...")
    subprocess.check_call([str(python_exec), "-m", "pip", "install", "--upgrade", "pip"])
    subprocess.check_call([str(python_exec), "-m", "pip", "install", "-e", str(PROJECT_ROOT)])

    INSTALL_MARKER.write_text(signature)


def launch_api() -> int:
    ensure_virtualenv()
    ensure_installed()

    host = os.getenv("STAFFING_API_HOST", "127.0.0.1")
    port = os.getenv("STAFFING_API_PORT", "8000")
    print(f"[launcher] Starting Staffing Engine API on http://{host}:{port} ...")
    return subprocess.call(
        [
            str(venv_python()),
            "-m",
            "uvicorn",
            "api:app",
            "--app-dir",
            str(APP_DIR),
            "--host",
            host,
            "--port",
            port,
        ]
    )


if __name__ == "__main__":
    try:
        exit_code = launch_api()
    except subprocess.CalledProcessError as exc:
        print(f"[launcher] Command failed with exit code {exc.returncode}", file=sys.stderr)
        sys.exit(exc.returncode)
    except (FileNotFoundError, OSError) as exc:
        print(f"[launcher] {exc}", file=sys.stderr)
        sys.exit(1)
    else:
        sys.exit(exit_code)
