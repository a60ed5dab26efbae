"""Declarative base shared by all models"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Largest value an INTEGER column holds on every supported backend
INTEGER_MAX = 2**31 - 1


def is_storable_id(value) -> bool:
    """True if value can be a primary key in an INTEGER column"""
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= INTEGER_MAX
