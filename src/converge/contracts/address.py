"""Resource addresses: the (type, name, index) key of one resource instance."""

import json
import re
from typing import Optional, Tuple, Union
from pydantic import BaseModel, Field

_ADDRESS_PATTERN = re.compile(
    r'^(?P<type>[A-Za-z][A-Za-z0-9_-]*)\.(?P<name>[A-Za-z_][A-Za-z0-9_-]*)'
    r'(?:\[(?P<index>\d+|"(?:[^"\\]|\\.)*")\])?$'
)


class Address(BaseModel):
    """Unique, immutable identifier of a resource instance."""
    type: str = Field(..., description="Resource type, e.g. aws_subnet")
    name: str = Field(..., description="Declared resource name")
    index: Optional[Union[int, str]] = Field(None, description="count index or for_each key")

    class Config:
        frozen = True

    def __str__(self) -> str:
        if self.index is None:
            return self.base
        if isinstance(self.index, int):
            return f"{self.base}[{self.index}]"
        return f"{self.base}[{json.dumps(self.index)}]"

    @property
    def base(self) -> str:
        """Address of the declaration without the instance index."""
        return f"{self.type}.{self.name}"

    def declaration_key(self) -> Tuple[str, str]:
        return (self.type, self.name)

    def sort_key(self) -> Tuple:
        """Deterministic ordering: type, name, then unindexed < int index < str key."""
        if self.index is None:
            index_key = (0, 0, "")
        elif isinstance(self.index, int):
            index_key = (1, self.index, "")
        else:
            index_key = (2, 0, self.index)
        return (self.type, self.name, index_key)

    @classmethod
    def parse(cls, text: str) -> "Address":
        """
        Parse an address string such as ``aws_subnet.public[0]``.

        Raises:
            ValueError: If the text is not a valid address
        """
        match = _ADDRESS_PATTERN.match(text.strip())
        if not match:
            raise ValueError(f"Invalid resource address: {text!r}")

        raw_index = match.group("index")
        index: Optional[Union[int, str]] = None
        if raw_index is not None:
            index = json.loads(raw_index) if raw_index.startswith('"') else int(raw_index)
        return cls(type=match.group("type"), name=match.group("name"), index=index)
