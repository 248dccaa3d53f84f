"""
Two-tower retrieval demo package.

Modules are grouped into data loading, model definitions, training and
serving pipelines, and utilities so each stage can be driven on its own.
"""

from .errors import TwoTowerError  # noqa: F401
from .session import Session  # noqa: F401
