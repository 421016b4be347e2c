"""
Case tables and their column layouts.

The numeric layout is MATPOWER's (so case files and external producers stay
compatible); column access goes through the named constants in
`bus`, `gen`, `branch` and `cost`.
"""

from __future__ import annotations

from .case import CaseTables

__all__ = ["CaseTables"]
