"""
Tests for RANK vote script encoding.
"""

import pytest

from lotuswallet.wallet.rank import (
    RankEncodingError,
    RankVote,
    rank_script,
    to_platform_buf,
    to_post_id_buf,
    to_profile_id_buf,
    to_sentiment_opcode,
)


class TestFieldEncoding:
    @pytest.mark.parametrize(
        "sentiment,opcode", [("positive", 0x60), ("negative", 0x00), ("neutral", 0x51)]
    )
    def test_sentiment(self, sentiment, opcode):
        assert to_sentiment_opcode(sentiment) == opcode

    def test_unknown_sentiment(self):
        with pytest.raises(RankEncodingError):
            to_sentiment_opcode("angry")

    def test_platform(self):
        assert to_platform_buf("lotusia") == b"\x00"
        assert to_platform_buf("twitter") == b"\x01"

    def test_unknown_platform(self):
        with pytest.raises(RankEncodingError):
            to_platform_buf("myspace")

    def test_profile_id_left_padded(self):
        buf = to_profile_id_buf("twitter", "elonmusk")
        assert len(buf) == 16
        assert buf == b"\x00" * 8 + b"elonmusk"

    def test_profile_id_too_long(self):
        with pytest.raises(RankEncodingError):
            to_profile_id_buf("twitter", "a" * 17)

    def test_profile_id_empty(self):
        with pytest.raises(RankEncodingError):
            to_profile_id_buf("twitter", "")

    def test_post_id_big_endian(self):
        assert to_post_id_buf("twitter", "258") == b"\x00" * 6 + b"\x01\x02"
        assert len(to_post_id_buf("lotusia", "1")) == 32

    def test_post_id_overflow(self):
        with pytest.raises(RankEncodingError):
            to_post_id_buf("twitter", str(2**64))

    def test_post_id_not_numeric(self):
        with pytest.raises(RankEncodingError):
            to_post_id_buf("twitter", "12ab")


class TestRankScript:
    def test_profile_vote(self):
        vote = RankVote(sentiment="positive", platform="twitter", profile_id="ElonMusk")
        script = rank_script(vote)
        assert script == (
            b"\x6a"
            + b"\x04RANK"
            + b"\x60"
            + b"\x01\x01"
            + b"\x10"
            + b"\x00" * 8
            + b"elonmusk"
        )

    def test_post_vote(self):
        vote = RankVote(
            sentiment="negative", platform="twitter", profile_id="jack", post_id="20"
        )
        script = rank_script(vote)
        assert script.endswith(b"\x08" + (20).to_bytes(8, "big"))
        assert script[6] == 0x00

    def test_comment_not_encoded(self):
        plain = RankVote(sentiment="neutral", platform="lotusia", profile_id="alice")
        commented = RankVote(
            sentiment="neutral", platform="lotusia", profile_id="alice", comment="hello"
        )
        assert rank_script(plain) == rank_script(commented)

    def test_from_dict_camel_case(self):
        vote = RankVote.from_dict(
            {"sentiment": "positive", "platform": "twitter", "profileId": "jack", "postId": "1"}
        )
        assert vote.profile_id == "jack"
        assert vote.post_id == "1"

    def test_from_dict_missing_field(self):
        with pytest.raises(RankEncodingError):
            RankVote.from_dict({"platform": "twitter", "profileId": "jack"})

    @pytest.mark.parametrize(
        "payload",
        [
            {"sentiment": "positive", "platform": "twitter"},
            {"sentiment": "positive", "platform": "twitter", "profileId": None},
            {"sentiment": "positive", "platform": "twitter", "profileId": 42},
            {"sentiment": "positive", "platform": 1, "profileId": "jack"},
            {"platform": "twitter", "profileId": "jack", "sentiment": ["positive"]},
            {"sentiment": "positive", "platform": "twitter", "profileId": "jack", "postId": 7},
            ["positive", "twitter", "jack"],
        ],
    )
    def test_from_dict_invalid_payload(self, payload):
        with pytest.raises(RankEncodingError, match="Invalid vote payload"):
            RankVote.from_dict(payload)
