"""Shared SQLAlchemy handle.

Models import ``db`` from here so they can be declared before the Flask
application is created; ``app.py`` binds it with ``db.init_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
