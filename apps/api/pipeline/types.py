"""Framework-neutral request/response contract shared by every pipeline layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional


@dataclass
class PipelineRequest:
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class PipelineResponse:
    """Uniform envelope: {success, status, message, data}."""

    success: bool
    status: int
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Dict[str, Any], message: str = "OK", status: int = 200) -> "PipelineResponse":
        return cls(success=True, status=status, message=message, data=data)

    @classmethod
    def failure(cls, status: int, message: str, data: Optional[Dict[str, Any]] = None) -> "PipelineResponse":
        return cls(success=False, status=status, message=message, data=dict(data or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "message": self.message,
            "data": self.data,
        }


Handler = Callable[[PipelineRequest], Awaitable[PipelineResponse]]
Middleware = Callable[[Handler], Handler]
