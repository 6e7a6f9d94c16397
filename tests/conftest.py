from __future__ import annotations

import sys
import textwrap
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))


import pytest

MODEL_SOURCE = textwrap.dedent(
    """
    from typing import Literal, NotRequired, TypedDict


    class Nested(TypedDict):
        nestedVal: int


    class Left(TypedDict):
        nestedVal1: int


    class Right(TypedDict):
        nestedVal2: str


    class Both(Left, Right):
        pass


    class MyType(TypedDict):
        value: int
        arr: list[int]
        optionalProp: NotRequired[str]
        enumProp: Literal[1, 2] | bool | Literal["literal string"]
        nestedObj: Nested
        intersectionType: Both
    """
).lstrip()

SAMPLE_DOCUMENT = textwrap.dedent(
    """
    {
        "$type": {
            "$from": "./model.py",
            "$import": "MyType"
        },
        "value": 1234,
        "arr": [56, 78, 90, "abcd"],
        "enumProp": 1,

        "nestedObj": {
            "nestedVal": 1234
        },

        "intersectionType": {
            "nestedVal1": 1234,
            "nestedVal2": "abcd"
        }
    }
    """
).lstrip()


@pytest.fixture
def model_path(tmp_path: Path) -> Path:
    path = tmp_path / "model.py"
    path.write_text(MODEL_SOURCE, encoding="utf-8")
    return path


@pytest.fixture
def sample_document(tmp_path: Path, model_path: Path) -> Path:
    path = tmp_path / "sample.json"
    path.write_text(SAMPLE_DOCUMENT, encoding="utf-8")
    return path
