"""Rubric text parsing core and supporting helpers."""

from .evaluation_parser import parse_evaluation

__all__ = ["parse_evaluation"]
