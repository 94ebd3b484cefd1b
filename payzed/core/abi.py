ERC20_ABI = [
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
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
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

SUBSCRIPTION_PAID_EVENT = {
    "type": "event",
    "name": "SubscriptionPaid",
    "anonymous": False,
    "inputs": [
        {"name": "subscriptionId", "type": "bytes32", "indexed": True},
        {"name": "payer", "type": "address", "indexed": True},
        {"name": "receiver", "type": "address", "indexed": True},
        {"name": "amount", "type": "uint256", "indexed": False},
        {"name": "tokenAddress", "type": "address", "indexed": False},
        {"name": "nextPaymentDue", "type": "uint256", "indexed": False},
        {"name": "totalPayments", "type": "uint256", "indexed": False},
    ],
}

_SUBSCRIPTION_ID_INPUT = [{"name": "subscriptionId", "type": "bytes32"}]

SUBSCRIPTION_ABI = [
    {
        "type": "function",
        "name": "createSubscription",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "receiver", "type": "address"},
            {"name": "payer", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "tokenAddress", "type": "address"},
            {"name": "period", "type": "uint256"},
            {"name": "description", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "paySubscription",
        "stateMutability": "nonpayable",
        "inputs": _SUBSCRIPTION_ID_INPUT,
        "outputs": [],
    },
    {
        "type": "function",
        "name": "cancelByCreator",
        "stateMutability": "nonpayable",
        "inputs": _SUBSCRIPTION_ID_INPUT,
        "outputs": [],
    },
    {
        "type": "function",
        "name": "cancelByPayer",
        "stateMutability": "nonpayable",
        "inputs": _SUBSCRIPTION_ID_INPUT,
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getSubscription",
        "stateMutability": "view",
        "inputs": _SUBSCRIPTION_ID_INPUT,
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "creator", "type": "address"},
                    {"name": "payer", "type": "address"},
                    {"name": "receiver", "type": "address"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "tokenAddress", "type": "address"},
                    {"name": "period", "type": "uint256"},
                    {"name": "nextPaymentDue", "type": "uint256"},
                    {"name": "totalPayments", "type": "uint256"},
                    {"name": "status", "type": "uint8"},
                    {"name": "description", "type": "string"},
                ],
            }
        ],
    },
    SUBSCRIPTION_PAID_EVENT,
]

_INVOICE_ID_INPUT = [{"name": "invoiceId", "type": "bytes32"}]

PAYZED_ABI = [
    {
        "type": "function",
        "name": "createInvoice",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "invoiceId", "type": "bytes32"},
            {"name": "receiver", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "tokenAddress", "type": "address"},
            {"name": "description", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "payInvoice",
        "stateMutability": "nonpayable",
        "inputs": _INVOICE_ID_INPUT,
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getInvoice",
        "stateMutability": "view",
        "inputs": _INVOICE_ID_INPUT,
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "creator", "type": "address"},
                    {"name": "receiver", "type": "address"},
                    {"name": "payer", "type": "address"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "tokenAddress", "type": "address"},
                    {"name": "paid", "type": "bool"},
                    {"name": "description", "type": "string"},
                ],
            }
        ],
    },
]

# On-chain subscription status enum
ON_CHAIN_STATUS_LABELS = {
    0: "Pending",
    1: "Active",
    2: "Cancelled by Creator",
    3: "Cancelled by Payer",
    4: "Paused",
}
