from datetime import datetime, UTC
from typing import Dict, Any, Optional
import os
import sys

STATUS_EMOJI = {
    "INFO": "ℹ️",
    "WARN": "⚠️",
    "ERROR": "❌",
    "DEBUG": "🔍",
    "OK": "✅",
}

# Log level hierarchy (lower number = more severe)
LOG_LEVELS = {
    "ERROR": 0,
    "WARN": 1,
    "WARNING": 1,
    "INFO": 2,
    "OK": 2,
    "DEBUG": 3,
}


class LogUtil:
    """
    Two-phase logger:
      - Bootstrap phase: env-driven (LOG_LEVEL)
      - Configured phase: config-driven (Truth / SetupBase output)

    Safe to use before and after SetupBase.
    Logging must NEVER raise.

    Components share the service logger through child():

        logger = LogUtil("catalog_sync")
        loader_log = logger.child("loader")
        loader_log.info("served by document_store")
        # [2026-01-01T00:00:00+00:00][catalog_sync:loader][INFO]ℹ️ served by document_store
    """

    def __init__(self, service_name: str, component: Optional[str] = None, parent: "LogUtil" = None):
        self.service_name = service_name
        self.component = component
        self._parent = parent

        # Phase 1: bootstrap (env only)
        env_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self._log_level = LOG_LEVELS.get(env_level, LOG_LEVELS["INFO"])
        self._configured = False

    # -------------------------------------------------
    # Level resolution (children follow their parent)
    # -------------------------------------------------

    @property
    def log_level(self) -> int:
        if self._parent is not None:
            return self._parent.log_level
        return self._log_level

    @property
    def debug_enabled(self) -> bool:
        return self.log_level >= LOG_LEVELS["DEBUG"]

    def child(self, component: str) -> "LogUtil":
        return LogUtil(self.service_name, component=component, parent=self._parent or self)

    # -------------------------------------------------
    # Configuration phase
    # -------------------------------------------------

    def configure_from_config(self, config: Dict[str, Any]) -> None:
        if self._configured or self._parent is not None:
            return

        try:
            cfg_level = str(config.get("LOG_LEVEL", "")).upper()
            if cfg_level and cfg_level in LOG_LEVELS:
                self._log_level = LOG_LEVELS[cfg_level]

            self._configured = True

            level_name = [k for k, v in LOG_LEVELS.items() if v == self._log_level and k not in ("WARNING", "OK")][0]
            self.info(
                f"[LOG CONFIGURED] level={level_name}",
                emoji="🧪" if self.debug_enabled else "🔊",
            )
        except Exception:
            # Logging must never break the process
            pass

    # -------------------------------------------------
    # Internal formatting
    # -------------------------------------------------

    def _name(self) -> str:
        if self.component:
            return f"{self.service_name}:{self.component}"
        return self.service_name

    def _stamp(self, level: str, message: str, emoji: str):
        now = datetime.now(UTC).isoformat(timespec="seconds")
        symbol = emoji or STATUS_EMOJI.get(level, "")
        return f"[{now}][{self._name()}][{level}]{symbol} {message}"

    def _emit(self, level: str, message: str, emoji: str = ""):
        try:
            msg_level = LOG_LEVELS.get(level, LOG_LEVELS["INFO"])
            if msg_level > self.log_level:
                return
            stream = sys.stderr if level == "ERROR" else sys.stdout
            print(self._stamp(level, message, emoji), file=stream, flush=True)
        except Exception:
            # Absolute last line of defense
            pass

    # -------------------------------------------------
    # Public API
    # -------------------------------------------------

    def info(self, message: str, emoji: str = STATUS_EMOJI["INFO"]):
        self._emit("INFO", message, emoji)

    def warn(self, message: str, emoji: str = STATUS_EMOJI["WARN"]):
        self._emit("WARN", message, emoji)

    def warning(self, message: str, emoji: str = STATUS_EMOJI["WARN"]):
        # Alias for compatibility with standard logging APIs
        self.warn(message, emoji)

    def error(self, message: str, emoji: str = STATUS_EMOJI["ERROR"]):
        self._emit("ERROR", message, emoji)

    def debug(self, message: str, emoji: str = STATUS_EMOJI["DEBUG"]):
        self._emit("DEBUG", message, emoji)

    def ok(self, message: str, emoji: str = STATUS_EMOJI["OK"]):
        self._emit("OK", message, emoji)
