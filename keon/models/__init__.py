"""
KEON Task Manager
Model package — shared Flask-SQLAlchemy instance.

All model modules import ``db`` from here:

    from keon.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
