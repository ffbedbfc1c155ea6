"""
Domain Module: Batch result assembly.

Implements:
- Per-tag windowing, validation and solving
- Persistence of position estimates and their contributing links
"""

from .result_assembler import (
    ResultAssembler,
    AssemblerConfig,
    RunSummary,
    WindowSolution,
    create_default_assembler,
)

__all__ = [
    'ResultAssembler',
    'AssemblerConfig',
    'RunSummary',
    'WindowSolution',
    'create_default_assembler',
]
