"""
Pydantic schemas for the meeting recap webhook.

Field names follow the sender's camelCase payload.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List


class MeetingInfo(BaseModel):
    title: Optional[str] = ""
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    meetingLink: Optional[str] = None
    meetingUrl: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class RecapAttendees(BaseModel):
    actual: List[str] = Field(default_factory=list)
    invited: List[str] = Field(default_factory=list)
    allNames: List[str] = Field(default_factory=list)

    @field_validator("actual", "invited", "allNames", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v

    model_config = ConfigDict(extra="ignore")


class ActionItemPayload(BaseModel):
    actionItemTitle: Optional[str] = ""
    actionItemDescription: Optional[str] = ""
    priority: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class RecapActionItems(BaseModel):
    myItems: List[ActionItemPayload] = Field(default_factory=list)
    othersItems: List[ActionItemPayload] = Field(default_factory=list)

    @field_validator("myItems", "othersItems", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v

    model_config = ConfigDict(extra="ignore")


class CompanyInfo(BaseModel):
    companyName: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class MeetingRecapPayload(BaseModel):
    """Inbound webhook body for type=meeting_recap."""
    meetingInfo: Optional[MeetingInfo] = None
    attendees: RecapAttendees = Field(default_factory=RecapAttendees)
    actionItems: RecapActionItems = Field(default_factory=RecapActionItems)
    companyInfo: CompanyInfo = Field(default_factory=CompanyInfo)
    summary: Optional[str] = ""

    @field_validator("attendees", "actionItems", "companyInfo", mode="before")
    @classmethod
    def null_as_default(cls, v):
        """A null section reads as an empty one."""
        return {} if v is None else v

    model_config = ConfigDict(extra="ignore")
