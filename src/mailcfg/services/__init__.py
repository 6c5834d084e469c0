"""Configuration operation services.

Each service implements the operations for one kind of entity and runs
every change as a transaction of the shared
:class:`~mailcfg.services.transaction.TransactionRunner`.
"""

from mailcfg.services.account import AccountService
from mailcfg.services.address import AddressService
from mailcfg.services.admin import ConfigAdminService, create_initial_config
from mailcfg.services.alias import AliasService
from mailcfg.services.dkim import DKIMService
from mailcfg.services.domain import DomainService
from mailcfg.services.transaction import Transaction, TransactionRunner

__all__ = [
    "AccountService",
    "AddressService",
    "AliasService",
    "ConfigAdminService",
    "DKIMService",
    "DomainService",
    "Transaction",
    "TransactionRunner",
    "create_initial_config",
]
