"""Base module for app metadata shared by CLI entry points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AppMeta:
    """App identity used for help text and version banners."""

    app_id: str
    purpose: str
    display_name: Optional[str] = None  # human-readable name (defaults to title-cased app_id)
    bin_name: Optional[str] = None  # defaults to the app_id with dashes
    example_cmd: Optional[str] = None  # example shown in --help epilog

    @property
    def _display_name(self) -> str:
        """Get display name, defaulting to title-cased app_id."""
        return self.display_name or self.app_id.replace("_", " ").title()

    @property
    def prog(self) -> str:
        return self.bin_name or self.app_id.replace("_", "-")

    @property
    def description(self) -> str:
        return f"{self._display_name}: {self.purpose}"

    @property
    def epilog(self) -> str:
        example = self.example_cmd or f"{self.prog} --help"
        return f"Example:\n  {example}"
