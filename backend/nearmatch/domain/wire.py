"""Base model for JSON payloads exchanged with clients."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
	"""Snake-case fields in Python, camelCase keys on the wire."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	def to_wire(self) -> dict:
		return self.model_dump(mode="json", by_alias=True)


class SuccessOut(WireModel):
	success: bool
