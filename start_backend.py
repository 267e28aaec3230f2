#!/usr/bin/env python3
"""
Start the Estate Energy API with auto-reload for local development.
"""

import os
import subprocess
import sys


def main():
    project_dir = os.path.dirname(os.path.abspath(__file__))
    port = os.environ.get("PORT", "8001")

    print(f"Starting Estate Energy API on port {port}...")
    try:
        subprocess.run(
            [
                sys.executable, "-m", "uvicorn",
                "main:app",
                "--host", "0.0.0.0",
                "--port", port,
                "--reload",
            ],
            cwd=project_dir,
        )
    except KeyboardInterrupt:
        print("\nShutting down API server...")


if __name__ == "__main__":
    main()
