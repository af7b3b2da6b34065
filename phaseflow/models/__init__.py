"""
PhaseFlow
Database handle shared by every model module.

Usage:
    from phaseflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
