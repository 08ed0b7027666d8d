"""
Chain classification for token addresses.

Tokens arrive as bare address strings. EVM addresses are 0x-prefixed hex;
anything else is treated as a Solana (SVM) mint.
"""

import re
from dataclasses import dataclass
from typing import Optional

from tradesim.db.models import ChainFamily, SpecificChain

EVM_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

CHAIN_FAMILY_BY_SPECIFIC_CHAIN: dict[SpecificChain, ChainFamily] = {
    SpecificChain.ETH: ChainFamily.EVM,
    SpecificChain.POLYGON: ChainFamily.EVM,
    SpecificChain.BSC: ChainFamily.EVM,
    SpecificChain.ARBITRUM: ChainFamily.EVM,
    SpecificChain.OPTIMISM: ChainFamily.EVM,
    SpecificChain.AVALANCHE: ChainFamily.EVM,
    SpecificChain.BASE: ChainFamily.EVM,
    SpecificChain.LINEA: ChainFamily.EVM,
    SpecificChain.ZKSYNC: ChainFamily.EVM,
    SpecificChain.SCROLL: ChainFamily.EVM,
    SpecificChain.MANTLE: ChainFamily.EVM,
    SpecificChain.SVM: ChainFamily.SVM,
}


@dataclass(frozen=True)
class ChainClassification:
    """Resolved chain family and, when known, the specific network."""
    chain_family: ChainFamily
    specific_chain: Optional[SpecificChain]


def _coerce(enum_cls, value):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def determine_chain_family(token: str) -> ChainFamily:
    """Guess the chain family from the address format alone."""
    if EVM_ADDRESS_PATTERN.match(token or ""):
        return ChainFamily.EVM
    return ChainFamily.SVM


def chain_family_for(specific_chain: SpecificChain) -> ChainFamily:
    return CHAIN_FAMILY_BY_SPECIFIC_CHAIN[SpecificChain(specific_chain)]


def is_evm_chain(value: ChainFamily | SpecificChain | str) -> bool:
    """True for the EVM family or any EVM network."""
    if value == ChainFamily.EVM:
        return True
    try:
        return chain_family_for(SpecificChain(value)) == ChainFamily.EVM
    except ValueError:
        return False


def classify(
    token: str,
    chain_family: Optional[ChainFamily] = None,
    specific_chain: Optional[SpecificChain] = None,
) -> ChainClassification:
    """
    Classify a token, preferring explicit hints over address format.

    A specific network determines its family. A bare SVM family implies the
    `svm` network; a bare EVM family leaves the network unknown.
    """
    # Unrecognized hints are ignored
    specific_chain = _coerce(SpecificChain, specific_chain)
    if specific_chain is not None:
        return ChainClassification(chain_family_for(specific_chain), specific_chain)

    chain_family = _coerce(ChainFamily, chain_family) or determine_chain_family(token)

    if chain_family == ChainFamily.SVM:
        return ChainClassification(ChainFamily.SVM, SpecificChain.SVM)
    return ChainClassification(ChainFamily.EVM, None)
