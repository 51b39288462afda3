"""
EduAssess Assessment Engine

This package implements the assessment engine of an education platform:
the lifecycle of a test from authoring, through student attempts, to
grading and aggregate statistics.

The engine features:
1. Test definitions with embedded questions and a guarded status lifecycle
2. Atomic attempt admission with audience, window and attempt-count checks
3. Objective auto-grading with negative marking and manual review of subjective answers
4. Test-level statistics derived from the attempt set
5. A FastAPI HTTP surface over the engine operations
"""

__version__ = "0.1.0"
