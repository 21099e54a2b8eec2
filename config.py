"""
Runtime settings for the portfolio dashboard API.

Values come from the environment; a ``.env`` file next to this module is
loaded first when present.
"""

import os
import uuid
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "portfolio-dashboard-" + uuid.uuid4().hex[:8])
APP_PASSWORD = os.getenv("APP_PASSWORD", "portfolio")
PORT = int(os.getenv("PORT", "5000"))
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))
PARSE_WORKERS = int(os.getenv("PARSE_WORKERS", "4"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Extensions handed to the workbook parser
SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm", ".xls")
