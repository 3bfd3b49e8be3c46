#!/usr/bin/env python3
"""
Core Ledger Entry Point

Starts the FastAPI server with the ledger backend. Host, port, database and
secrets come from LEDGER_* environment variables or a .env file.
"""

import sys

from core_ledger.api import run_server
from core_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Core Ledger...")
    print(f"Environment: {config.environment}")
    print(f"API available at: http://localhost:{config.api_port}/api/v1")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=config.is_development)
    except KeyboardInterrupt:
        print("\nShutting down Core Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
