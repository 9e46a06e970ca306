"""
Settings loader for the Piracy Scan Engine service.

DJANGO_ENV selects the module: "production", "test", otherwise development.
"""

import os

DJANGO_ENV = os.getenv("DJANGO_ENV", "development")

if DJANGO_ENV == "production":
    from .production import *
elif DJANGO_ENV == "test":
    from .test import *
else:
    from .development import *
