"""
AllowAccounts of the partitions.

An account is blocked by removing it from the AllowAccounts list of every
partition. The list is read, changed and written back partition by partition,
scontrol can't do this atomically, so the changes on a cluster are serialized
with a lock. Updates already applied on some partitions are not rolled back
when a later partition fails.
"""
import logging
import threading
from slurmadapter.exceptions import Internal, NotFound
from slurm.scheduler import AccountACL

logger = logging.getLogger(__name__)

_locks = {}
_locks_guard = threading.Lock()


def cluster_lock(cluster_name):
    """Lock shared by every change of the AllowAccounts of a cluster"""
    with _locks_guard:
        if cluster_name not in _locks:
            _locks[cluster_name] = threading.Lock()
        return _locks[cluster_name]


class AccessControlSynchronizer:
    def __init__(self, context):
        self.context = context
        self.store = context.store
        self.scheduler = context.scheduler
        self.control = context.control
        self.lock = cluster_lock(context.config.cluster_name)

    def current_acl(self, partitions):
        """
        AllowAccounts of the first partition, the other partitions are expected
        to have the same list. Return the acl and whether a partition differs.
        """
        if not partitions:
            raise Internal('The cluster has no partition.', reason='NO_PARTITION')
        acl = partitions[0].allow_accounts
        divergent = [p.name for p in partitions[1:] if p.allow_accounts != acl]
        if divergent:
            logger.warning('AllowAccounts of partition(s) {} differ from {}: {}'.format(
                ', '.join(divergent), partitions[0].name, acl))
        return acl, bool(divergent)

    def write(self, partitions, acl):
        if not acl.unrestricted and not acl.accounts:
            # scontrol would read an empty list as ALL
            raise Internal('Refusing to set an empty AllowAccounts.', reason='EMPTY_ALLOW_ACCOUNTS')
        for partition in partitions:
            logger.info('Setting AllowAccounts of {} to {}'.format(partition.name, acl))
            self.control.set_allow_accounts(partition.name, acl)

    def check_account(self, account):
        if not self.store.account_exists(account):
            raise NotFound('The account {} does not exist.'.format(account), reason='ACCOUNT_NOT_FOUND')

    def block_account(self, account):
        self.check_account(account)
        with self.lock:
            partitions = self.scheduler.partitions()
            acl, divergent = self.current_acl(partitions)
            if acl.unrestricted:
                new_acl = AccountACL(self.store.associated_accounts(exclude=account))
            elif account in acl:
                new_acl = acl.without(account)
            else:
                new_acl = acl
            if new_acl == acl and not divergent:
                logger.info('Account {} is already blocked'.format(account))
                return False
            self.write(partitions, new_acl)
        return True

    def unblock_account(self, account):
        self.check_account(account)
        with self.lock:
            partitions = self.scheduler.partitions()
            acl, divergent = self.current_acl(partitions)
            if account in acl:
                new_acl = acl
            else:
                new_acl = acl.with_account(account)
            if new_acl == acl and not divergent:
                logger.info('Account {} is not blocked'.format(account))
                return False
            self.write(partitions, new_acl)
        return True

    def is_blocked(self, account):
        self.check_account(account)
        acl, _ = self.current_acl(self.scheduler.partitions())
        return account not in acl
