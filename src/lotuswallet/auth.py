"""
BlockDataSig challenge/response codec.

A server challenges with

    WWW-Authenticate: BlockDataSig blockhash=<64 hex> blockheight=<digits>

and the wallet answers with

    Authorization: base64(<authorization data JSON> ":::" <message signature>)

Parsing never raises: malformed input yields None.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any

from coincurve import PrivateKey
from pydantic import BaseModel, Field, ValidationError

from lotuswallet.crypto import sign_message

AUTHENTICATE_SCHEME = "BlockDataSig"
AUTHORIZATION_PREFIX = "Authorization"
AUTHORIZATION_DELIMITER = ":::"

_BLOCKHASH_PARAM = re.compile(r"blockhash=([a-f0-9]{64})")
_BLOCKHEIGHT_PARAM = re.compile(r"blockheight=([0-9]{1,10})")


class BlockDataSig(BaseModel):
    """Challenge issued by the server: a recent block to sign over."""

    blockhash: str = Field(pattern=r"^[a-f0-9]{64}$")
    blockheight: str = Field(pattern=r"^\d{1,10}$")


class AuthorizationData(BaseModel):
    """Signed payload proving control of the wallet script."""

    scriptPayload: str
    blockhash: str
    blockheight: str
    instanceId: str | None = None


@dataclass(frozen=True)
class AuthorizationResponse:
    payload: str
    signature: str

    @property
    def data(self) -> dict[str, Any] | None:
        """Payload decoded as JSON, or None if it is not a JSON object"""
        try:
            decoded = json.loads(self.payload)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None


def parse_challenge(header: str) -> BlockDataSig | None:
    """
    Parse a `BlockDataSig` challenge.

    Exactly one blockhash and one blockheight parameter must be present, in
    any order; anything else returns None.
    """
    if not isinstance(header, str):
        return None

    scheme, _, params = header.strip().partition(" ")
    if scheme != AUTHENTICATE_SCHEME or not params:
        return None

    tokens = params.split()
    if len(tokens) != 2:
        return None

    hashes: list[str] = []
    heights: list[str] = []
    for token in tokens:
        if match := _BLOCKHASH_PARAM.fullmatch(token):
            hashes.append(match.group(1))
        elif match := _BLOCKHEIGHT_PARAM.fullmatch(token):
            heights.append(match.group(1))
        else:
            return None
    if len(hashes) != 1 or len(heights) != 1:
        return None

    try:
        return BlockDataSig(blockhash=hashes[0], blockheight=heights[0])
    except ValidationError:
        return None


def encode_response(payload: str, signature: str) -> str:
    """base64(payload + ':::' + signature)"""
    return base64.b64encode(
        (payload + AUTHORIZATION_DELIMITER + signature).encode("utf-8")
    ).decode("ascii")


def parse_response(header: str) -> AuthorizationResponse | None:
    """
    Decode an Authorization header value.

    Accepts either the bare token or "Authorization <token>".
    """
    if not isinstance(header, str):
        return None

    parts = header.strip().split(" ")
    if len(parts) == 2:
        if parts[0] != AUTHORIZATION_PREFIX:
            return None
        token = parts[1]
    elif len(parts) == 1:
        token = parts[0]
    else:
        return None

    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None

    payload, delimiter, signature = decoded.partition(AUTHORIZATION_DELIMITER)
    if not delimiter or not payload or not signature:
        return None

    return AuthorizationResponse(payload=payload, signature=signature)


def build_authorization(
    challenge: BlockDataSig,
    script_payload: str,
    signing_key: PrivateKey,
    instance_id: str | None = None,
) -> str:
    """Sign a challenge and encode it as an Authorization header value"""
    data = AuthorizationData(
        scriptPayload=script_payload,
        blockhash=challenge.blockhash,
        blockheight=challenge.blockheight,
        instanceId=instance_id,
    )
    payload = data.model_dump_json(exclude_none=True)
    return encode_response(payload, sign_message(payload, signing_key))
