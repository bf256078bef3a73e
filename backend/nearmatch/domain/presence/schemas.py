from __future__ import annotations

from nearmatch.domain.wire import WireModel


class OnlineStatusRequest(WireModel):
	is_online: bool


class OnlineStatusOut(WireModel):
	success: bool
	is_online: bool
