#!/usr/bin/env python3
"""
Run script for NoteVault.

This is a convenience script for development.
For production, use gunicorn directly (single worker: the unlocked session
key lives in the worker's memory):
    gunicorn 'notevault:create_app()' --bind 127.0.0.1:8000 --workers 1

Usage:
    python run.py
"""
import os
from notevault import create_app

if __name__ == '__main__':
    app = create_app()

    # Run in development mode
    # In production, set FLASK_ENV=production and use gunicorn
    app.run(
        host='127.0.0.1',  # Only allow localhost connections
        port=5001,
        debug=os.environ.get('FLASK_ENV') == 'development',  # Auto-reload on code changes
        threaded=True
    )
