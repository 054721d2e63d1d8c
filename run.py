#!/usr/bin/env python3
"""
Lending Core Entry Point

Starts the FastAPI server with the lending core.
"""

import sys

from lending_core.api import run_server
from lending_core.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Lending Core...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"Repayment allocation policy: {config.repayment_allocation_policy}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down Lending Core...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
