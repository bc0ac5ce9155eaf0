"""Resources holding the raw contents of SoundFont files."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class SoundFont:
    """The raw bytes of a .sf2/.sf3/.sfo file, kept as an independent copy."""

    data: bytes = b""

    def __post_init__(self) -> None:
        self.data = bytes(self.data)

    def __setattr__(self, name: str, value: object) -> None:
        if name == "data":
            value = bytes(value)  # type: ignore[arg-type]
        super().__setattr__(name, value)

    def __len__(self) -> int:
        return len(self.data)

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> SoundFont:
        """Load the whole file at ``path`` into a new resource."""
        with open(path, "rb") as handle:
            return cls(handle.read())