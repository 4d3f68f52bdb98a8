"""Minimal ABIs for the Unlock PublicLock contract and ERC20 tokens"""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

PUBLIC_LOCK_ABI = [
    {
        "type": "function",
        "name": "keyPrice",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "tokenAddress",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "purchase",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_values", "type": "uint256[]"},
            {"name": "_recipients", "type": "address[]"},
            {"name": "_referrers", "type": "address[]"},
            {"name": "_keyManagers", "type": "address[]"},
            {"name": "_data", "type": "bytes[]"},
        ],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
]

ERC20_ABI = [
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]
