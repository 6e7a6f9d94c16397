"""Value types produced by decoding a JSON document body.

The matcher walks these; anything outside this value space cannot come out
of `json.loads` and is never matched.
"""

from __future__ import annotations

from typing import TypeAlias


JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
