"""Allow running as ``python -m nvim_crossbuild``."""

from nvim_crossbuild.cli import app

if __name__ == "__main__":
    app()
