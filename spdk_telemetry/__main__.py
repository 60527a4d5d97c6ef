"""Allow ``python -m spdk_telemetry``."""

from spdk_telemetry.cli import app

if __name__ == "__main__":
    app()
