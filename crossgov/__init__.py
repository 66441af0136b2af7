"""
CrossGov Package

Off-chain vote aggregation for a two-chain governance system.

Core imports are lazily loaded so that importing the package does not pull
in web3 or FastAPI. For direct module access, import from submodules:

    from crossgov.governance import VoteLedger, MerkleFreezer
    from crossgov.bridge import CrossChainPublisher, Relayer
    from crossgov.exceptions import ValidationError
"""

__version__ = "0.1.0"


# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'GovernanceService':
        from .service import GovernanceService
        return GovernanceService
    elif name == 'create_app':
        from .api import create_app
        return create_app
    elif name == 'load_config':
        from .config import load_config
        return load_config
    elif name == 'CrossGovError':
        from .exceptions import CrossGovError
        return CrossGovError
    raise AttributeError(f"module 'crossgov' has no attribute {name!r}")

__all__ = ['GovernanceService', 'create_app', 'load_config', 'CrossGovError']
