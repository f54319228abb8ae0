# app_settings.py
from __future__ import annotations

from PyQt6.QtCore import QSettings


class AppSettings:
    """
    Typed wrapper for QSettings.
    Stores the last used instrument address and timeouts in an INI file (per-user).
      Linux:   ~/.config/pylxi/lxi.ini
      Windows: %APPDATA%\\pylxi\\lxi.ini
    """
    ORG = "pylxi"
    APP = "lxi"

    DEFAULT_IP = ""
    DEFAULT_PORT = 5025
    DEFAULT_TIMEOUT = 1.0
    DEFAULT_SCREENSHOT_TIMEOUT = 5.0

    def __init__(self, path: str | None = None):
        if path is None:
            self._s = QSettings(QSettings.Format.IniFormat,
                                QSettings.Scope.UserScope,
                                self.ORG, self.APP)
        else:
            self._s = QSettings(path, QSettings.Format.IniFormat)

    # ---- instrument ----
    @property
    def ip(self) -> str:
        return self._s.value("instrument/ip", self.DEFAULT_IP, str)

    @ip.setter
    def ip(self, v: str):
        self._s.setValue("instrument/ip", v)

    @property
    def port(self) -> int:
        return int(self._s.value("instrument/port", self.DEFAULT_PORT))

    @port.setter
    def port(self, v: int):
        self._s.setValue("instrument/port", int(v))

    # ---- timeouts (seconds) ----
    @property
    def timeout(self) -> float:
        return float(self._s.value("timeouts/default", self.DEFAULT_TIMEOUT))

    @timeout.setter
    def timeout(self, v: float):
        self._s.setValue("timeouts/default", float(v))

    @property
    def screenshot_timeout(self) -> float:
        return float(self._s.value("timeouts/screenshot", self.DEFAULT_SCREENSHOT_TIMEOUT))

    @screenshot_timeout.setter
    def screenshot_timeout(self, v: float):
        self._s.setValue("timeouts/screenshot", float(v))

    # ---- misc ----
    def sync(self):
        self._s.sync()

    def file_path(self) -> str:
        return self._s.fileName()
