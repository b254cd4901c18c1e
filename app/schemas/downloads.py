from datetime import datetime

from pydantic import BaseModel


class DownloadLink(BaseModel):
    url: str
    title: str
    expires_at: datetime


class TokenInfoOut(BaseModel):
    valid: bool
    reason: str | None = None
    module_id: int
    click_count: int
    max_clicks: int
    remaining_clicks: int
    expires_at: datetime
