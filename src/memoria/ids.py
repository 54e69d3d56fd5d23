"""Identifier helpers."""

from uuid import uuid4

TURN_PREFIX = "trn"
SUMMARY_PREFIX = "sum"
MEMORY_PREFIX = "mem"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"
