"""User agent classification."""

from __future__ import annotations

from typing import Protocol

from ua_parser import user_agent_parser

SPIDER_FAMILY = "Spider"


class BotDetector(Protocol):
    def is_bot(self, user_agent: str) -> bool: ...


class UaParserBotDetector:
    """Flags user agents whose device family ua-parser reports as ``Spider``."""

    def is_bot(self, user_agent: str) -> bool:
        device = user_agent_parser.ParseDevice(user_agent)
        return device.get("family") == SPIDER_FAMILY
