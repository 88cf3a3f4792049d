"""HTTP collaborators: token/price feed and chain RPC."""

from .chain import LAMPORTS_PER_SOL, SolanaRpcClient, TransactionBuilder, TreasuryWallet
from .client import TokenFeedClient

__all__ = [
    "LAMPORTS_PER_SOL",
    "SolanaRpcClient",
    "TokenFeedClient",
    "TransactionBuilder",
    "TreasuryWallet",
]
