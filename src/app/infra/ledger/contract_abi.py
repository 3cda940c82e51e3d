"""ABI of the RecipeRegistry hash-registration contract."""
from __future__ import annotations

RECIPE_REGISTERED_EVENT_SIGNATURE = "RecipeRegistered(string,address,uint256,uint256)"

RECIPE_REGISTRY_ABI = [
    {
        "inputs": [
            {"internalType": "string", "name": "hash", "type": "string"},
            {"internalType": "address", "name": "author", "type": "address"},
        ],
        "name": "registerRecipe",
        "outputs": [{"internalType": "bool", "name": "success", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "string", "name": "hash", "type": "string"}],
        "name": "verifyRecipe",
        "outputs": [
            {"internalType": "bool", "name": "exists", "type": "bool"},
            {"internalType": "address", "name": "author", "type": "address"},
            {"internalType": "uint256", "name": "timestamp", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "string", "name": "oldHash", "type": "string"},
            {"internalType": "string", "name": "newHash", "type": "string"},
            {"internalType": "address", "name": "author", "type": "address"},
        ],
        "name": "updateRecipe",
        "outputs": [{"internalType": "bool", "name": "success", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "string", "name": "hash", "type": "string"},
            {"indexed": True, "internalType": "address", "name": "author", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "blockNumber", "type": "uint256"},
        ],
        "name": "RecipeRegistered",
        "type": "event",
    },
]
