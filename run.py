#!/usr/bin/env python3
"""
Bursary Entry Point

Starts the FastAPI server for the school finance ledger. Host, port and
database come from BURSARY_* environment variables or .env.
"""

import sys

from bursary.api import run_server


if __name__ == "__main__":
    print("Starting Bursary finance ledger...")
    print("Double-entry bookkeeping enabled")
    print("Audit trail active")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Bursary...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
