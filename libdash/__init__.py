"""Library Dashboard - Core Application Package

This package contains the core application modules including:
- Document persistence and repair (storage.py, repair.py, library.py)
- Request dispatcher emulating the REST API (dispatcher.py)
- Dashboard analytics (analytics.py)
- API endpoints (api.py)
- CLI interface (main.py)
"""

__version__ = "1.0.0"
