from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthMember(BaseModel):
    """
    Represents a member authenticated by a first-party session token.
    """

    member_id: str = Field(..., alias="sub")
    email: Optional[str] = None
    exp: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)
