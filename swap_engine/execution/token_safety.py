from __future__ import annotations

from typing import Any

from .rpc import SolanaRpcClient
from .types import TokenSafetyInfo

TOKEN_2022_PROGRAM = "spl-token-2022"
TRANSFER_FEE_EXTENSIONS = {"transferFeeConfig", "transferFeeAmount"}


def parse_mint_account(mint: str, account: dict[str, Any]) -> TokenSafetyInfo:
    data = account.get("data")
    parsed = data.get("parsed") if isinstance(data, dict) else None
    if not isinstance(parsed, dict) or parsed.get("type") != "mint":
        raise RuntimeError(f"Account {mint} is not a parsed SPL mint")

    info = parsed.get("info") if isinstance(parsed.get("info"), dict) else {}
    extensions = info.get("extensions") if isinstance(info.get("extensions"), list) else []
    has_transfer_fee = data.get("program") == TOKEN_2022_PROGRAM and any(
        isinstance(item, dict) and item.get("extension") in TRANSFER_FEE_EXTENSIONS for item in extensions
    )

    return TokenSafetyInfo(
        mint=mint,
        has_freeze_authority=bool(info.get("freezeAuthority")),
        has_mint_authority=bool(info.get("mintAuthority")),
        has_transfer_fee=has_transfer_fee,
    )


class RpcTokenSafetyProvider:
    """Reads mint authorities and Token-2022 extensions from the mint account.

    Token age and holder counts are not derivable from a single RPC read and are left
    unset.
    """

    def __init__(self, *, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc
        self._cache: dict[str, TokenSafetyInfo] = {}

    async def get_token_safety(self, mint: str) -> TokenSafetyInfo | None:
        cached = self._cache.get(mint)
        if cached is not None:
            return cached

        account = await self._rpc.get_account_info(mint)
        if account is None:
            return None

        info = parse_mint_account(mint, account)
        self._cache[mint] = info
        return info
