"""
RANK protocol encoding.

A RANK output is an OP_RETURN script:
    OP_RETURN <"RANK"> <sentiment opcode> <platform> <profile id> [<post id>]
Profile ids are lower-cased and left zero-padded to the platform width, post
ids are unsigned integers encoded big-endian at the platform width.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from lotuswallet.constants import RANK_PROTOCOL_TAG
from lotuswallet.wallet.address import OP_0, OP_1, OP_16, OP_RETURN, push_data

Sentiment = Literal["positive", "negative", "neutral"]
Platform = Literal["lotusia", "twitter"]


class RankEncodingError(ValueError):
    pass


@dataclass(frozen=True)
class PlatformSpec:
    byte: int
    profile_id_len: int
    post_id_len: int


PLATFORMS: dict[str, PlatformSpec] = {
    "lotusia": PlatformSpec(byte=0x00, profile_id_len=32, post_id_len=32),
    "twitter": PlatformSpec(byte=0x01, profile_id_len=16, post_id_len=8),
}

SENTIMENT_OPCODES: dict[str, int] = {
    "positive": OP_16,
    "negative": OP_0,
    "neutral": OP_1,
}


@dataclass
class RankVote:
    """One vote on a profile (or a post of that profile)."""

    sentiment: Sentiment
    platform: Platform
    profile_id: str
    post_id: str | None = None
    # Accepted but never encoded into the transaction
    comment: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> RankVote:
        """Build from the camelCase message payload shape."""
        if not isinstance(data, dict):
            raise RankEncodingError(f"Invalid vote payload: {data!r}")

        fields = {
            "sentiment": data.get("sentiment"),
            "platform": data.get("platform"),
            "profileId": data.get("profileId", data.get("profile_id")),
        }
        for name, value in fields.items():
            if not isinstance(value, str):
                raise RankEncodingError(f"Invalid vote payload: missing or non-string {name}")

        post_id = data.get("postId", data.get("post_id"))
        if post_id is not None and not isinstance(post_id, str):
            raise RankEncodingError("Invalid vote payload: non-string postId")

        return cls(
            sentiment=fields["sentiment"],
            platform=fields["platform"],
            profile_id=fields["profileId"],
            post_id=post_id,
            comment=data.get("comment"),
        )


def _platform(platform: str) -> PlatformSpec:
    try:
        return PLATFORMS[platform]
    except KeyError:
        raise RankEncodingError(f"Unsupported platform: {platform}") from None


def to_sentiment_opcode(sentiment: str) -> int:
    try:
        return SENTIMENT_OPCODES[sentiment]
    except KeyError:
        raise RankEncodingError(f"Unsupported sentiment: {sentiment}") from None


def to_platform_buf(platform: str) -> bytes:
    return bytes([_platform(platform).byte])


def to_profile_id_buf(platform: str, profile_id: str) -> bytes:
    width = _platform(platform).profile_id_len
    raw = profile_id.encode("utf-8")
    if not raw:
        raise RankEncodingError("Profile id is empty")
    if len(raw) > width:
        raise RankEncodingError(f"Profile id longer than {width} bytes: {profile_id}")
    return raw.rjust(width, b"\x00")


def to_post_id_buf(platform: str, post_id: str) -> bytes:
    width = _platform(platform).post_id_len
    if not post_id.isdigit():
        raise RankEncodingError(f"Post id must be numeric: {post_id}")
    try:
        return int(post_id).to_bytes(width, "big")
    except OverflowError:
        raise RankEncodingError(f"Post id does not fit in {width} bytes: {post_id}") from None


def rank_script(vote: RankVote) -> bytes:
    """OP_RETURN locking script for a single vote"""
    script = bytes([OP_RETURN])
    script += push_data(RANK_PROTOCOL_TAG)
    script += bytes([to_sentiment_opcode(vote.sentiment)])
    script += push_data(to_platform_buf(vote.platform))
    script += push_data(to_profile_id_buf(vote.platform, vote.profile_id.lower()))
    if vote.post_id:
        script += push_data(to_post_id_buf(vote.platform, vote.post_id))
    return script
