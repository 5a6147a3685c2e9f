#!/usr/bin/env python3
"""
Blotter Coordinator - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for a blotter instance.

- Compatible with PM2 / service managers
- Can be started, stopped, and restarted safely
- SIGINT / SIGTERM release the master lease before exit

============================================================
USAGE
============================================================
Direct execution:
    python app.py run --user alice

With PM2:
    pm2 start app.py --interpreter python --name blotter -- run

Environment-based configuration:
    BLOTTER_USER=alice DATABASE_URL=postgresql://... python app.py run

============================================================
"""

import sys

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
