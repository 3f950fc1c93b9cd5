"""gspread client construction from service-account credentials."""

from pathlib import Path

import gspread
from google.oauth2.service_account import Credentials

from ..errors import AdapterUnreachable
from ..utils.logging import get_logger

logger = get_logger("sheets.client")

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


def build_client(credentials_file: str | Path) -> gspread.Client:
    """Authorize a gspread client. Blocking; call from an executor."""
    path = Path(credentials_file)
    if not path.exists():
        raise AdapterUnreachable(f"Google credentials not found at {path}")
    try:
        creds = Credentials.from_service_account_file(str(path), scopes=SCOPES)
    except ValueError as exc:
        raise AdapterUnreachable(f"Google credentials are invalid: {exc}") from exc
    logger.info("sheets_client_authorized", service_account=creds.service_account_email)
    return gspread.authorize(creds)
