# boxoffice/models/common.py
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class StoreModel(BaseModel):
    """A shape persisted as one document; enum fields are stored as their values."""

    model_config = ConfigDict(use_enum_values=True)

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump()
