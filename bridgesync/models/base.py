"""
Declarative base shared by all bridgesync tables.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
