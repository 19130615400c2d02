"""Process-wide configuration read from a YAML parameter file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import yaml

logger = logging.getLogger(__name__)

_MATRIX_TAG = "tag:yaml.org,2002:opencv-matrix"


class _Loader(yaml.SafeLoader):
    pass


def _construct_matrix(loader: _Loader, node) -> np.ndarray:
    mapping = loader.construct_mapping(node, deep=True)
    try:
        return np.array(mapping["data"], dtype=float).reshape(mapping["rows"], mapping["cols"])
    except (KeyError, ValueError, TypeError) as exc:
        raise yaml.constructor.ConstructorError(None, None, f"bad matrix: {exc}", node.start_mark)


_Loader.add_constructor(_MATRIX_TAG, _construct_matrix)


def _strip_directive(text: str) -> str:
    # Parameter files may begin with a "%YAML:1.0" line that is not valid YAML.
    return "\n".join(
        line for line in text.splitlines() if not line.lstrip().startswith("%YAML")
    )


class Config:
    """The parameters of the current parameter file, shared by the whole process."""

    _parameters: dict[str, Any] | None = None

    @staticmethod
    def set_parameter_file(filename) -> None:
        """Load a parameter file, replacing any loaded before.

        Raises OSError if the file cannot be read and ValueError if it is
        not a YAML mapping; either way no parameters remain loaded.
        """
        Config._parameters = None
        try:
            text = Path(filename).read_text(encoding="utf-8")
        except OSError:
            logger.error("parameter file %s does not exist.", filename)
            raise
        try:
            data = yaml.load(_strip_directive(text), Loader=_Loader)
        except yaml.YAMLError as exc:
            raise ValueError(f"parameter file {filename} is malformed: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"parameter file {filename} does not hold a mapping")
        Config._parameters = data

    @staticmethod
    def get(key: str) -> Any:
        """The value of a parameter; KeyError if the file does not set it."""
        if Config._parameters is None:
            raise RuntimeError("no parameter file is loaded")
        try:
            return Config._parameters[key]
        except KeyError:
            raise KeyError(f"parameter {key!r} is not set") from None