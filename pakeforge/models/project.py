from __future__ import annotations

import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from pakeforge.pake.config import PakeConfig


def now_millis() -> int:
    return int(time.time() * 1000)


class Project(BaseModel):
    """A persisted, named, timestamped packaging configuration."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = ''
    config: PakeConfig = Field(default_factory=PakeConfig)
    last_modified: int = Field(0, alias='lastModified')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Project:
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)

    def snapshot(self) -> Project:
        """Get an independent deep copy."""
        return self.model_copy(deep=True)
