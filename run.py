#!/usr/bin/env python3
"""
Selldown Payout Engine Entry Point

Starts the FastAPI server with the payout engine, configured from SELLDOWN_* settings.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from selldown.api import run_server
from selldown.config import get_config
from selldown.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)

    print("Starting Selldown Payout Engine...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Selldown Payout Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
