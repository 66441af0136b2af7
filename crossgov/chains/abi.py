"""
Contract ABIs

Only the fragments the off-chain services call. These must match the
deployed Chain A publisher/executor and the Chain B verifier.
"""


def _fn(name, inputs, outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], [("", "uint256")]),
]

# Chain A: GovernanceRootPublisher
PUBLISHER_ABI = [
    _fn("getSnapshot", [("proposalId", "uint256")],
        [("snapshotBlock", "uint64"), ("snapshotER", "uint256")]),
    _fn("getWindow", [("proposalId", "uint256")],
        [("votingStart", "uint64"), ("votingEnd", "uint64")]),
    _fn("getDeadline", [("proposalId", "uint256")], [("", "uint256")]),
    _fn("proposals", [("proposalId", "uint256")], [
        ("actionDataHash", "bytes32"),
        ("votingStart", "uint64"),
        ("votingEnd", "uint64"),
        ("snapshotBlock", "uint256"),
        ("snapshotER", "uint256"),
        ("deadline", "uint256"),
        ("powerRoot", "bytes32"),
        ("totalPower", "uint256"),
        ("quorum", "uint256"),
        ("threshold", "uint256"),
        ("frozen", "bool"),
    ]),
    _fn("publishRoot", [
        ("proposalId", "uint256"),
        ("root", "bytes32"),
        ("totalPower", "uint256"),
        ("quorum", "uint256"),
        ("threshold", "uint256"),
    ], mutability="nonpayable"),
]

# Chain A: GovernanceExecutor
EXECUTOR_ABI = [
    _fn("commitAction", [("actionDataHash", "bytes32")], mutability="nonpayable"),
    _fn("executeIfAuthorized", [("actionData", "bytes")], [("", "bool")], mutability="nonpayable"),
]

# Chain B: VoteVerifier (freeze mirror, ProposalPassed, batch tally)
VERIFIER_ABI = [
    _fn("freezeProposal", [
        ("proposalId", "uint256"),
        ("powerRoot", "bytes32"),
        ("actionDataHash", "bytes32"),
        ("votingStart", "uint64"),
        ("votingEnd", "uint64"),
        ("quorum", "uint256"),
        ("threshold", "uint256"),
    ], mutability="nonpayable"),
    {
        "type": "event",
        "name": "ProposalPassed",
        "anonymous": False,
        "inputs": [
            {"name": "proposalId", "type": "uint256", "indexed": True},
            {"name": "actionDataHash", "type": "bytes32", "indexed": False},
        ],
    },
    _fn("getNextNonce", [("proposalId", "uint256"), ("voter", "address")], [("", "uint256")]),
    {
        "type": "function",
        "name": "batchVerifyAndTally",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "votes",
                "type": "tuple[]",
                "components": [
                    {"name": "proposalId", "type": "uint256"},
                    {"name": "support", "type": "bool"},
                    {"name": "voter", "type": "address"},
                    {"name": "power", "type": "uint256"},
                    {"name": "nonce", "type": "uint256"},
                    {"name": "deadline", "type": "uint256"},
                    {"name": "abstain", "type": "bool"},
                    {"name": "signature", "type": "bytes"},
                ],
            },
            {"name": "leaves", "type": "bytes32[]"},
            {"name": "proof", "type": "bytes32[]"},
            {"name": "proofFlags", "type": "bool[]"},
        ],
        "outputs": [],
    },
]
