from __future__ import annotations

from typing import Literal

STAGE_VALUES = ("New", "Contacted", "Replied", "Meeting", "Proposal", "Won", "Lost")
SOURCE_TYPE_VALUES = ("Instagram", "Meta Ads", "Scraping", "Referral", "Website", "Other", "Unknown")
FOLLOWUP_WINDOW_VALUES = ("Morning", "Afternoon", "Anytime")
ACCESS_LEVEL_VALUES = ("read", "edit")

Stage = Literal["New", "Contacted", "Replied", "Meeting", "Proposal", "Won", "Lost"]
SourceType = Literal["Instagram", "Meta Ads", "Scraping", "Referral", "Website", "Other", "Unknown"]
FollowupWindow = Literal["Morning", "Afternoon", "Anytime"]

DEFAULT_SOURCE_TYPE = "Unknown"
DEFAULT_FOLLOWUP_WINDOW = "Anytime"

BULK_ACTIONS = (
    "assign_owner",
    "change_stage",
    "set_source",
    "set_followup",
    "add_services",
    "remove_services",
    "archive",
)
MAX_BULK_LEAD_IDS = 500

DUPLICATE_REASONS = ("domain", "contact", "website_url")

IMPORTED_EVENT_TYPE = "imported"
