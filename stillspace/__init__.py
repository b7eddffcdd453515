"""
Still Space - offline caching layer for a meditation web app

Sits between the pages and the app's API server:
- Per-route caching policies (audio, static assets, API, documents)
- Versioned cache generations with install/activate cleanup
- Offline write queue drained when connectivity returns
- Background sync of offline meditation records and push reminders
"""

from stillspace.core.config import StillSpaceConfig, get_config, set_config
from stillspace.registration import WorkerRegistration
from stillspace.worker import ServiceWorker

__all__ = [
    'ServiceWorker',
    'WorkerRegistration',
    'StillSpaceConfig',
    'get_config',
    'set_config',
]

__version__ = '0.1.0'
