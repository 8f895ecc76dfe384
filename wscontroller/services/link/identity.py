"""
Device identity persistence.

The 3-digit device code is kept in two places: a plain-text number file and a
JSON preferences file. Reads reconcile them: when they disagree the most
recently written one wins and the other is rewritten; when only one has a
code it is copied to the other.
"""
import json
import re
import time
from pathlib import Path
from typing import Optional, Tuple

from wscontroller.core.logging import get_logger
from .exceptions import InvalidIdentity

logger = get_logger(__name__)

DEVICE_CODE_RE = re.compile(r"[0-9]{3}")
PREF_KEY = "device_number"


def validate_device_code(code) -> str:
    """Return the code if it is exactly three ASCII digits, else raise InvalidIdentity."""
    if not isinstance(code, str) or not DEVICE_CODE_RE.fullmatch(code):
        raise InvalidIdentity(code)
    return code


class IdentityStore:
    """Self-healing two-store persistence for the device code."""

    def __init__(self, number_file: str, preferences_file: str):
        self.number_file = Path(number_file)
        self.preferences_file = Path(preferences_file)
        self._code: Optional[str] = self._load()

    # =========================================================================
    # Public API
    # =========================================================================

    def get(self) -> Optional[str]:
        return self._code

    def has_identity(self) -> bool:
        return bool(self._code)

    def set(self, code: str) -> None:
        validate_device_code(code)
        self._write_file(code)
        self._write_prefs(code, time.time())
        self._code = code
        logger.info("Device code saved", code=code)

    def reload(self) -> Optional[str]:
        self._code = self._load()
        return self._code

    # =========================================================================
    # Backing stores
    # =========================================================================

    def _load(self) -> Optional[str]:
        file_code, file_at = self._read_file()
        pref_code, pref_at = self._read_prefs()

        if not file_code and not pref_code:
            return None

        if file_code and not pref_code:
            self._write_prefs(file_code, file_at)
            return file_code

        if pref_code and not file_code:
            self._write_file(pref_code)
            return pref_code

        if file_code == pref_code:
            return file_code

        # Both set and different: newest write wins
        if file_at >= pref_at:
            logger.warning("Identity stores disagree, keeping number file",
                           file_code=file_code, prefs_code=pref_code)
            self._write_prefs(file_code, file_at)
            return file_code

        logger.warning("Identity stores disagree, keeping preferences",
                       file_code=file_code, prefs_code=pref_code)
        self._write_file(pref_code)
        return pref_code

    def _read_file(self) -> Tuple[Optional[str], float]:
        if not self.number_file.exists():
            return None, 0.0
        try:
            lines = self.number_file.read_text(encoding="utf-8").splitlines()
            written_at = self.number_file.stat().st_mtime
        except OSError as e:
            logger.error("Failed to read device number file", path=str(self.number_file), error=str(e))
            return None, 0.0
        code = lines[0].strip() if lines else ""
        if not DEVICE_CODE_RE.fullmatch(code):
            if code:
                logger.warning("Ignoring invalid code in number file", code=code)
            return None, 0.0
        return code, written_at

    def _read_prefs(self) -> Tuple[Optional[str], float]:
        if not self.preferences_file.exists():
            return None, 0.0
        try:
            prefs = json.loads(self.preferences_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to read preferences", path=str(self.preferences_file), error=str(e))
            return None, 0.0
        if not isinstance(prefs, dict):
            return None, 0.0
        code = str(prefs.get(PREF_KEY) or "")
        if not DEVICE_CODE_RE.fullmatch(code):
            return None, 0.0
        try:
            written_at = float(prefs.get("updated_at") or 0.0)
        except (TypeError, ValueError):
            written_at = 0.0
        return code, written_at

    def _write_file(self, code: str) -> None:
        try:
            self.number_file.parent.mkdir(parents=True, exist_ok=True)
            self.number_file.write_text(code, encoding="utf-8")
        except OSError as e:
            logger.error("Failed to write device number file", path=str(self.number_file), error=str(e))

    def _write_prefs(self, code: str, written_at: float) -> None:
        prefs = {}
        if self.preferences_file.exists():
            try:
                loaded = json.loads(self.preferences_file.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    prefs = loaded
            except (OSError, ValueError) as e:
                logger.warning("Rewriting unreadable preferences", path=str(self.preferences_file), error=str(e))
        prefs[PREF_KEY] = code
        prefs["updated_at"] = written_at
        try:
            self.preferences_file.parent.mkdir(parents=True, exist_ok=True)
            self.preferences_file.write_text(json.dumps(prefs, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Failed to write preferences", path=str(self.preferences_file), error=str(e))
