"""
Contract ABI fragments - only the events and functions the pipeline uses.
"""


def _event(name, *inputs):
    return {
        'type': 'event',
        'name': name,
        'anonymous': False,
        'inputs': [
            {'name': arg_name, 'type': arg_type, 'indexed': indexed}
            for arg_name, arg_type, indexed in inputs
        ],
    }


def _function(name, inputs, outputs=(), mutability='nonpayable'):
    return {
        'type': 'function',
        'name': name,
        'stateMutability': mutability,
        'inputs': [{'name': n, 'type': t} for n, t in inputs],
        'outputs': [{'name': n, 'type': t} for n, t in outputs],
    }


DOMAIN_REGISTRATION_ABI = [
    _event('RegistrationRequested',
           ('domainName', 'string', False),
           ('requester', 'address', False),
           ('fee', 'uint256', False)),
    _event('OwnershipUpdateRequested',
           ('domainName', 'string', False),
           ('requester', 'address', False),
           ('fee', 'uint256', False)),
    _event('RegistrationFeeUpdated', ('newFee', 'uint256', False)),
    _event('OwnershipUpdateFeeUpdated', ('newFee', 'uint256', False)),
]

NFT_MINTER_ABI = [
    _event('NFTMinted',
           ('tokenId', 'uint256', True),
           ('to', 'address', True),
           ('domainNameHash', 'bytes32', False),
           ('domainName', 'string', False)),
    _event('DomainOwnerSet',
           ('domainNameHash', 'bytes32', True),
           ('owner', 'address', False),
           ('domainName', 'string', False)),
    _event('DomainMintableStatusSet',
           ('domainNameHash', 'bytes32', True),
           ('isMintable', 'bool', False),
           ('domainName', 'string', False)),
    _event('DomainNFTMintedStatusSet',
           ('domainNameHash', 'bytes32', True),
           ('isMinted', 'bool', False),
           ('domainName', 'string', False)),
    _function('setDomainNameToOwner', [('domainName', 'string'), ('owner', 'address')]),
    _function('setIsDomainMintable', [('domainName', 'string'), ('isMintable', 'bool')]),
    _function('getTokenNameFromId', [('tokenId', 'uint256')], [('', 'string')], 'view'),
    _function('getDomainOwner', [('domainName', 'string')], [('', 'address')], 'view'),
    _function('isDomainMintable', [('domainName', 'string')], [('', 'bool')], 'view'),
    _function('getTokenIdForDomain', [('domainName', 'string')], [('', 'uint256')], 'view'),
]

TOKEN_MINTER_ABI = [
    _event('TokenCreated',
           ('nftId', 'uint256', True),
           ('tokenAddress', 'address', False),
           ('tokenName', 'string', False),
           ('receivedDirectly', 'bool', False),
           ('feeAmount', 'uint256', False)),
    _event('NFTReceived',
           ('tokenId', 'uint256', True),
           ('from', 'address', False)),
    _event('FixedFeeUpdated', ('newFee', 'uint256', False)),
    _event('LaunchpadContractUpdated', ('newLaunchpad', 'address', False)),
    _event('ProceedsWithdrawn',
           ('to', 'address', False),
           ('amount', 'uint256', False)),
]


def event_abi(abi: list, event_name: str) -> dict:
    """Find a single event fragment by name"""
    for item in abi:
        if item.get('type') == 'event' and item.get('name') == event_name:
            return item
    raise KeyError(f"Event {event_name} not in ABI")
