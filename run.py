#!/usr/bin/env python3
"""
Bank API Entry Point

Starts the FastAPI server with settings from the BANK_* environment.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from bank_api.api import run_server
from bank_api.config import get_config
from bank_api.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    print(f"Starting Bank API on http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Bank API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
