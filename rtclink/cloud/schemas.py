"""
Pydantic schemas mirroring the session management REST contract.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class CreateSessionRequest(BaseModel):
    device_id: str = Field(
        validation_alias=AliasChoices("deviceId", "deviceSn", "device_id"),
        serialization_alias="deviceId",
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("device_id", mode="before")
    @classmethod
    def _normalise_device(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("deviceId is required")
        return result


class CreateSessionResponse(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")


class SessionStatusModel(BaseModel):
    session_id: str = Field(serialization_alias="sessionId")
    device_id: str = Field(serialization_alias="deviceId")
    member_id: Optional[str] = Field(default=None, serialization_alias="memberId")
    status: str = "created"
    created_at: int = Field(serialization_alias="createdAt")
    config_pushed: bool = Field(default=False, serialization_alias="configPushed")


class SessionConfigModel(BaseModel):
    stunServers: List[str] = Field(default_factory=list)
    turnServers: List[str] = Field(default_factory=list)
    rtcConfiguration: str = ""
    extraConfig: str = ""


def wrap(payload: Any) -> Dict[str, Any]:
    """Responses are wrapped in ``{"code": 0, "data": ...}`` like the production API."""

    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    return {"code": 0, "data": payload}
