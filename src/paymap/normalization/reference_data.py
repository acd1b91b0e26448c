"""Reference data for normalization.

This module defines the closed chain vocabulary, alias maps, and other lookup
tables used by the rule-based normalizers. Everything here is plain data; the
chain tables can be extended at runtime through a ``chains.meta.json`` file
without touching code (see :mod:`paymap.normalization.chains`).
"""

import re

# Strict chain identifiers accepted in canonical records.
KNOWN_CHAIN_IDS = frozenset(
    {
        "bitcoin",
        "lightning",
        "evm-mainnet",
        "polygon",
        "arbitrum",
        "optimism",
        "base",
        "bsc",
        "avalanche",
        "solana",
        "tron",
        "ton",
        "dogecoin",
        "litecoin",
    }
)

# Parameterized EVM identifier (CAIP-2 style).
EVM_CHAIN_PATTERN = re.compile(r"^eip155:(\d+)$")

# EIP-155 chain ids that fold into a named strict chain.
EVM_CHAIN_IDS = {
    1: "evm-mainnet",
    10: "optimism",
    56: "bsc",
    137: "polygon",
    8453: "base",
    42161: "arbitrum",
    43114: "avalanche",
}

# Human-entered chain names mapped to strict chain ids.
FALLBACK_CHAIN_ALIASES = {
    "bitcoin": "bitcoin",
    "btc": "bitcoin",
    "onchain": "bitcoin",
    "on-chain": "bitcoin",
    "on chain": "bitcoin",
    "lightning": "lightning",
    "lightning network": "lightning",
    "ln": "lightning",
    "lnurl": "lightning",
    "bolt11": "lightning",
    "bolt12": "lightning",
    "evm": "evm-mainnet",
    "eth": "evm-mainnet",
    "ether": "evm-mainnet",
    "ethereum": "evm-mainnet",
    "erc20": "evm-mainnet",
    "mainnet": "evm-mainnet",
    "ethereum mainnet": "evm-mainnet",
    "eth mainnet": "evm-mainnet",
    "polygon": "polygon",
    "matic": "polygon",
    "polygon pos": "polygon",
    "arbitrum": "arbitrum",
    "arbitrum one": "arbitrum",
    "arb": "arbitrum",
    "optimism": "optimism",
    "op mainnet": "optimism",
    "base": "base",
    "bsc": "bsc",
    "bep20": "bsc",
    "bnb chain": "bsc",
    "bnb smart chain": "bsc",
    "binance smart chain": "bsc",
    "avalanche": "avalanche",
    "avax": "avalanche",
    "c-chain": "avalanche",
    "avalanche c-chain": "avalanche",
    "solana": "solana",
    "sol": "solana",
    "spl": "solana",
    "tron": "tron",
    "trx": "tron",
    "trc20": "tron",
    "ton": "ton",
    "toncoin": "ton",
    "doge": "dogecoin",
    "dogecoin": "dogecoin",
    "ltc": "litecoin",
    "litecoin": "litecoin",
}

# Spelled-out asset names mapped to canonical tickers.
KNOWN_ASSETS = {
    "bitcoin": "BTC",
    "xbt": "BTC",
    "ether": "ETH",
    "ethereum": "ETH",
    "tether": "USDT",
    "usd tether": "USDT",
    "usd coin": "USDC",
    "solana": "SOL",
    "dogecoin": "DOGE",
    "litecoin": "LTC",
    "toncoin": "TON",
    "tronix": "TRX",
}

# Native chain assumed for a ticker declared without a chain.
NATIVE_CHAIN_BY_ASSET = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "TRX": "tron",
    "TON": "ton",
    "DOGE": "dogecoin",
    "LTC": "litecoin",
    "AVAX": "avalanche",
    "MATIC": "polygon",
    "POL": "polygon",
    "BNB": "bsc",
}

# Legacy ``coins`` entries without chain info historically defaulted to Ethereum.
LEGACY_COIN_DEFAULT_CHAINS = {
    "USDT": "ethereum",
    "USDC": "ethereum",
}

# Legacy boolean payment flags expanded into declaration lines.
LEGACY_PAYMENT_FLAGS = {
    "btc": "BTC / bitcoin",
    "onchain": "BTC / bitcoin",
    "lightning": "BTC / lightning",
    "eth": "ETH / ethereum",
}

PROCESSORS = frozenset(
    {"btcpay", "opennode", "strike", "coinbase-commerce", "nowpayments", "bitpay", "self-hosted", "other"}
)

# Desirability ranking used to derive ``payment.preferred``.
PREFERRED_SCORES = {
    ("BTC", "lightning"): 100,
    ("BTC", "bitcoin"): 90,
    ("ETH", "evm-mainnet"): 80,
}
DEFAULT_PREFERRED_SCORE = 10

SOCIAL_PLATFORM_ALIASES = {
    "instagram": "instagram",
    "ig": "instagram",
    "facebook": "facebook",
    "fb": "facebook",
    "x": "x",
    "twitter": "x",
    "tiktok": "tiktok",
    "youtube": "youtube",
    "yt": "youtube",
    "telegram": "telegram",
    "tg": "telegram",
    "whatsapp": "whatsapp",
    "wechat": "wechat",
    "line": "line",
    "threads": "threads",
    "pinterest": "pinterest",
}

# Hostname fragments used to infer a ``Source.type``.
PROVIDER_HOST_HINTS = ("btcpay", "coinbase", "opennode", "bitpay", "strike.me", "nowpayments", "btcmap")
SOCIAL_HOST_HINTS = ("x.com", "twitter.com", "facebook.com", "instagram.com", "t.me")

# Country names and aliases mapped to ISO alpha-2 when no countries file is loaded.
KNOWN_COUNTRIES = {
    "japan": "JP",
    "日本": "JP",
    "italy": "IT",
    "italia": "IT",
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "america": "US",
    "united kingdom": "GB",
    "uk": "GB",
    "britain": "GB",
    "great britain": "GB",
    "germany": "DE",
    "deutschland": "DE",
    "france": "FR",
    "spain": "ES",
    "españa": "ES",
    "korea": "KR",
    "south korea": "KR",
    "대한민국": "KR",
    "韓国": "KR",
    "china": "CN",
    "中国": "CN",
    "taiwan": "TW",
    "台灣": "TW",
    "hong kong": "HK",
    "russia": "RU",
    "russian federation": "RU",
    "vatican city": "VA",
    "holy see": "VA",
    "el salvador": "SV",
    "switzerland": "CH",
    "portugal": "PT",
}

# Legacy verification labels folded into the four trust tiers.
VERIFICATION_STATUS_ALIASES = {
    "owner": "owner",
    "owner-verified": "owner",
    "ownerverified": "owner",
    "ownersubmitted": "owner",
    "community": "community",
    "community-verified": "community",
    "communityverified": "community",
    "communitysubmitted": "community",
    "directory": "directory",
    "directory-listed": "directory",
    "directorylisted": "directory",
    "directoryverified": "directory",
    "directorysourced": "directory",
    "verified": "directory",
    "unverified": "unverified",
    "pending": "unverified",
    "unknown": "unverified",
}

# Report details that indicate a closure or relocation.
CLOSURE_PATTERN = re.compile(
    r"(closed|closing|moved|relocat|shut\s*down|out of business|no longer (?:exists|open)|移転|閉店)",
    re.IGNORECASE,
)
