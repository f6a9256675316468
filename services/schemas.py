"""
Pydantic-схемы для данных, приходящих извне: резервные копии и
аргументы вызовов инструментов AI
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

class BackupPayload(BaseModel):
    """Импортируемый снимок: должен содержать username или level"""
    model_config = ConfigDict(extra="allow")

    username: Optional[str] = None
    level: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def require_identity(self) -> "BackupPayload":
        if self.username is None and self.level is None:
            raise ValueError("Несовместимый формат данных: нет username или level")
        return self

    def as_snapshot(self) -> Dict[str, Any]:
        data = self.model_dump()
        for key in ("username", "level"):
            if data.get(key) is None:
                data.pop(key, None)
        return data

class BackupFile(BaseModel):
    """Файл экспорта: {"export_info": {...}, "user_data": {...}}"""
    model_config = ConfigDict(extra="ignore")

    export_info: Dict[str, Any] = Field(default_factory=dict)
    user_data: BackupPayload

class CreateReminderArgs(BaseModel):
    message: str = Field(min_length=1, max_length=500)
    time_delay_minutes: Optional[float] = Field(default=None, ge=0)
    exact_time_string: Optional[str] = None

    @field_validator("exact_time_string")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

class SystemNotificationArgs(BaseModel):
    message: str = Field(min_length=1, max_length=500)

class TacticalReply(BaseModel):
    """Ответ тактического анализа"""
    model_config = ConfigDict(extra="ignore")

    message: str = Field(min_length=1)
    extra_penalty: int = Field(default=0, ge=0)
