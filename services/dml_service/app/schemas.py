"""
Pydantic schemas for the DML Service API.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AccountCreate(BaseModel):
    """Schema for creating an account."""

    name: str = Field(..., min_length=1, max_length=255)
    industry: Optional[str] = Field(default=None, max_length=255)

    class Config:
        json_schema_extra = {
            "example": {"name": "Acme Corp", "industry": "Manufacturing"}
        }


class AccountUpdate(BaseModel):
    """Schema for changing an account's name and industry."""

    name: str = Field(..., min_length=1, max_length=255)
    industry: Optional[str] = Field(default=None, max_length=255)


class LastNameUpdate(BaseModel):
    last_name: str = Field(..., min_length=1, max_length=80)


class StageUpdate(BaseModel):
    stage: str = Field(..., min_length=1, max_length=255)


class OpportunityListRequest(BaseModel):
    """Opportunities to upsert; ones carrying an Id are updated."""

    opportunities: List[Dict[str, Any]]

    class Config:
        json_schema_extra = {
            "example": {
                "opportunities": [
                    {"Name": "Acme - 500 Widgets"},
                    {"Id": "0065g000000AbCdEAF", "Name": "Acme - Renewal"},
                ]
            }
        }


class NameListRequest(BaseModel):
    """A list of names; repeats are allowed."""

    names: List[str]


class ContactListRequest(BaseModel):
    """Contacts to link to accounts named after their LastName."""

    contacts: List[Dict[str, Any]]

    class Config:
        json_schema_extra = {
            "example": {
                "contacts": [
                    {"FirstName": "Jane", "LastName": "Globex"},
                    {"FirstName": "Hank", "LastName": "Globex"},
                ]
            }
        }


class CaseBatchRequest(BaseModel):
    count: int = Field(..., ge=0, le=200)


class RecordIdResponse(BaseModel):
    """Schema for a single created record."""

    id: str
    sobject: str
    provider: str


class RecordListResponse(BaseModel):
    """Schema for operations returning the written records."""

    sobject: str
    provider: str
    records: List[Dict[str, Any]]


class DeletedResponse(BaseModel):
    """Schema for insert-then-delete operations."""

    sobject: str
    provider: str
    deleted_ids: List[str]
