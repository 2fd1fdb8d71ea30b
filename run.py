#!/usr/bin/env python3
"""
Process Flow Entry Point

Starts the FastAPI server with host, port and database taken from the
PROCESSFLOW_* environment (see process_flow/config.py).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from process_flow.api import run_server
from process_flow.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Process Flow API...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Process Flow API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
