#!/usr/bin/env python3
"""
capturelab API Server Starter

Starts the capturelab REST API server from a source checkout.
"""

import sys
import os

# Add the src path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from capturelab.server import main

if __name__ == "__main__":
    main()
