"""
Common Components for EduAssess

This package contains infrastructure shared across the engine:
1. Logging - Centralized logging configuration
2. Error Handling - Exception hierarchy, retry and error responses
3. Authentication - FastAPI dependencies resolving the calling actor
"""

from eduassess.common.logger import app_logger
