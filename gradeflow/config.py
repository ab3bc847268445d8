"""
Gradeflow Configuration
Database, token and rate-limit settings
"""

import os

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "gradeflow_db")

# Identity tokens (issued by the external auth service)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# HTTP
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
VERSION = os.getenv("VERSION", "0.1.0")

# Rate limiting for mutating grade/submission routes
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Grading defaults
DEFAULT_MAX_GRADE = 100
PASSING_GRADE_RATIO = 0.6
DEFAULT_CODE_MAX_SCORE = 100

# Upstream services reported by /health/dependencies
AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "")
COURSE_SERVICE_URL = os.getenv("COURSE_SERVICE_URL", "")
HEALTH_TIMEOUT_SECONDS = 5.0
