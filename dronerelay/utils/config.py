"""Parse TOML configuration files into Pydantic models."""
from __future__ import annotations

import sys
from typing import BinaryIO
from typing import TypeVar

from pydantic import BaseModel

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    import tomllib
else:  # pragma: <3.11 cover
    import tomli as tomllib

BaseModelT = TypeVar('BaseModelT', bound=BaseModel)


def load(model: type[BaseModelT], fp: BinaryIO) -> BaseModelT:
    """Parse TOML from a binary file into a model.

    Args:
        model: Model type to validate the parsed TOML against.
        fp: File-like bytes stream to read.

    Returns:
        Model initialized from the TOML file.
    """
    return loads(model, fp.read().decode())


def loads(model: type[BaseModelT], data: str) -> BaseModelT:
    """Parse a TOML string into a model.

    Validation is strict so values are not coerced between types.

    Args:
        model: Model type to validate the parsed TOML against.
        data: TOML string.

    Returns:
        Model initialized from the TOML string.
    """
    return model.model_validate(tomllib.loads(data), strict=True)
