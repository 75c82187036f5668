"""
SQLAlchemy extension instance shared by every model module.

Usage:
    from funnel_vault.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
