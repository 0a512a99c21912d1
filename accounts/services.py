import logging
from accounts.acl import AccessControlSynchronizer
from slurmadapter.common import check_identifiers
from slurmadapter.exceptions import AlreadyExists, Internal, NotFound

logger = logging.getLogger(__name__)


class BaseService:
    def __init__(self, context):
        self.context = context
        self.store = context.store
        self.scheduler = context.scheduler
        self.control = context.control

    def check_account(self, account):
        if not self.store.account_exists(account):
            raise NotFound('{} does not exist.'.format(account), reason='ACCOUNT_NOT_FOUND')

    def check_user(self, user):
        if not self.store.user_exists(user):
            raise NotFound('{} does not exist.'.format(user), reason='USER_NOT_FOUND')

    def check_association(self, user, account):
        check_identifiers(user, account)
        self.check_account(account)
        self.check_user(user)
        if not self.store.association_exists(user, account):
            raise NotFound(
                'The association of {} and {} does not exist.'.format(user, account),
                reason='USER_ACCOUNT_NOT_FOUND')

    def create_associations(self, user, account):
        """Associate the user to the account in every partition with all the qos"""
        partitions = self.scheduler.partition_names()
        if not partitions:
            raise Internal('The cluster has no partition.', reason='NO_PARTITION')
        qos = list(self.store.qos_names().values())
        for partition in partitions:
            self.control.create_association(user, account, partition)
            self.control.set_user_qos(user, qos, self.context.config.default_qos)


class AccountService(BaseService):
    def __init__(self, context):
        super().__init__(context)
        self.acl = AccessControlSynchronizer(context)

    def list_accounts(self, user):
        check_identifiers(user)
        self.check_user(user)
        return self.store.accounts_of_user(user)

    def create_account(self, account, owner):
        check_identifiers(account, owner)
        if self.store.account_exists(account):
            raise AlreadyExists('The account {} already exists.'.format(account), reason='ACCOUNT_ALREADY_EXISTS')
        self.control.create_account(account)
        self.create_associations(owner, account)
        logger.info('Account {} created, owner is {}'.format(account, owner))

    def block_account(self, account):
        check_identifiers(account)
        if self.acl.block_account(account):
            logger.info('Account {} blocked'.format(account))

    def unblock_account(self, account):
        check_identifiers(account)
        if self.acl.unblock_account(account):
            logger.info('Account {} unblocked'.format(account))

    def is_blocked(self, account):
        check_identifiers(account)
        return self.acl.is_blocked(account)

    def accounts_with_users(self):
        accounts = self.store.accounts()
        acl, _ = self.acl.current_acl(self.scheduler.partitions())
        result = []
        for account in accounts:
            users = [
                {'user_id': user, 'user_name': user, 'blocked': blocked}
                for user, blocked in self.store.users_of_account(account)
            ]
            result.append({
                'account_name': account,
                'blocked': account not in acl,
                'users': users,
            })
        return result

    def delete_account(self, account):
        check_identifiers(account)
        self.check_account(account)
        if self.scheduler.account_has_jobs(account):
            raise Internal('The account {} has running jobs.'.format(account), reason='RUNNING_JOB_EXISTS')
        self.control.delete_account(account)
        logger.info('Account {} deleted'.format(account))


class UserService(BaseService):
    def add_user(self, user, account):
        check_identifiers(user, account)
        self.check_account(account)
        if self.store.user_exists(user):
            raise AlreadyExists('The user {} already exists.'.format(user), reason='USER_ALREADY_EXISTS')
        self.create_associations(user, account)
        logger.info('User {} created in {}'.format(user, account))

    def add_user_to_account(self, user, account):
        check_identifiers(user, account)
        self.check_account(account)
        if self.store.association_exists(user, account):
            raise AlreadyExists(
                'The user {} already exists in {}.'.format(user, account), reason='USER_ALREADY_EXISTS')
        self.create_associations(user, account)
        logger.info('User {} added to {}'.format(user, account))

    def remove_user_from_account(self, user, account):
        self.check_association(user, account)
        uid = self.context.identity.uid(user)
        if uid is not None and self.store.has_unfinished_jobs(uid, account):
            raise Internal('{} has running jobs in {}.'.format(user, account), reason='RUNNING_JOB_EXISTS')

        other_accounts = [a for a in self.store.accounts_of_user(user) if a != account]
        if not other_accounts:
            # last account of the user
            self.control.delete_user(user)
        else:
            self.control.set_default_account(user, other_accounts[0])
            self.control.delete_user(user, account=account)
        logger.info('User {} removed from {}'.format(user, account))

    def block_user(self, user, account):
        self.check_association(user, account)
        self.control.set_submit_limits(user, account, 0)
        logger.info('User {} blocked in {}'.format(user, account))

    def unblock_user(self, user, account):
        self.check_association(user, account)
        self.control.set_submit_limits(user, account, -1)
        logger.info('User {} unblocked in {}'.format(user, account))

    def is_blocked(self, user, account):
        self.check_association(user, account)
        return any(limit == 0 for limit in self.store.max_submit_jobs(user, account))

    def delete_user(self, user):
        check_identifiers(user)
        self.check_user(user)
        if self.scheduler.user_has_jobs(user):
            raise Internal('{} has running jobs.'.format(user), reason='RUNNING_JOB_EXISTS')
        self.control.delete_user(user)
        logger.info('User {} deleted'.format(user))
