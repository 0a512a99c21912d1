from tests.tests import CustomTestCase
from accounts.acl import cluster_lock
from slurm.models import AssocTable, JobTable
from slurm.scheduler import CommandResult

PARTITION_LINE = (
    'PartitionName={name} AllowGroups=ALL AllowAccounts={acl} AllowQos=ALL AllocNodes=ALL Default=NO '
    'QoS=N/A DefaultTime=NONE MaxNodes=UNLIMITED Nodes={name}[001-002] State=UP TotalCPUs=64 '
    'TotalNodes=2 TRES=cpu=64,mem=500G,node=2,billing=64\n'
)


class FakePartitions:
    """AllowAccounts of the partitions, changed by scontrol update"""

    def __init__(self, acls):
        self.acls = dict(acls)

    def show(self, args, input):
        if len(args) > 3 and args[3] != '--oneliner':
            return PARTITION_LINE.format(name=args[3], acl=self.acls[args[3]])
        return ''.join(PARTITION_LINE.format(name=name, acl=acl) for name, acl in self.acls.items())

    def update(self, args, input):
        name = args[2].partition('=')[2]
        self.acls[name] = args[3].partition('=')[2]
        return ''

    def install(self, executor):
        executor.set('scontrol show partition', self.show)
        executor.set('scontrol update', self.update)


class AccountsTestCase(CustomTestCase):
    def setUp(self):
        super().setUp()
        self.create_qos('normal', 'high')
        self.create_account('acme', 'user01')
        self.create_account('beta', 'user02')
        self.create_account('gamma')

    def set_partitions(self, **acls):
        self.partitions = FakePartitions(acls)
        self.partitions.install(self.executor)

    def test_anonymous_user(self):
        response = self.client.post('/api/account/ListAccounts/', {'user_id': 'user01'},
                                    content_type='application/json')
        self.assertEqual(response.status_code, 403)

    def test_list_accounts(self):
        self.create_account('beta', 'user01')
        response = self.rpc('account', 'ListAccounts', {'user_id': 'user01'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'accounts': ['acme', 'beta']})

    def test_list_accounts_unknown_user(self):
        response = self.rpc('account', 'ListAccounts', {'user_id': 'nobody'})
        self.assertRpcError(response, 404, 'USER_NOT_FOUND')

    def test_list_accounts_missing_user(self):
        response = self.rpc('account', 'ListAccounts', {})
        self.assertRpcError(response, 400, 'INVALID_REQUEST')
        self.assertIn('user_id', response.json()['errors'])

    def test_create_account(self):
        self.set_partitions(compute='ALL', gpu='ALL')
        response = self.rpc('account', 'CreateAccount', {'account_name': 'delta', 'owner_user_id': 'user01'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [
            ['sacctmgr', '-i', 'create', 'account', 'name=delta'],
            ['sacctmgr', '-i', 'create', 'user', 'name=user01', 'partition=compute', 'account=delta'],
            ['sacctmgr', '-i', 'modify', 'user', 'user01', 'set', 'qos=normal,high', 'DefaultQOS=normal'],
            ['sacctmgr', '-i', 'create', 'user', 'name=user01', 'partition=gpu', 'account=delta'],
            ['sacctmgr', '-i', 'modify', 'user', 'user01', 'set', 'qos=normal,high', 'DefaultQOS=normal'],
        ])

    def test_create_account_already_exists(self):
        response = self.rpc('account', 'CreateAccount', {'account_name': 'acme', 'owner_user_id': 'user01'})
        self.assertRpcError(response, 409, 'ACCOUNT_ALREADY_EXISTS')
        self.assertEqual(response.json()['code'], 'ALREADY_EXISTS')

    def test_create_account_illegal_characters(self):
        response = self.rpc('account', 'CreateAccount', {'account_name': 'a b', 'owner_user_id': 'user01'})
        self.assertRpcError(response, 400, 'ACCOUNT_USER_CONTAIN_ILLEGAL_CHARACTERS')
        self.assertEqual(self.executor.commands, [])

    def test_create_account_failed(self):
        self.set_partitions(compute='ALL')
        self.executor.set('sacctmgr -i create account', CommandResult('', 'sacctmgr: error: Problem adding\n', 1))
        response = self.rpc('account', 'CreateAccount', {'account_name': 'delta', 'owner_user_id': 'user01'})
        self.assertRpcError(response, 500, 'COMMAND_EXEC_FAILED')

    def test_block_account_all(self):
        self.set_partitions(compute='ALL', gpu='ALL')
        response = self.rpc('account', 'BlockAccount', {'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.partitions.acls, {'compute': 'beta,gamma', 'gpu': 'beta,gamma'})

        # blocking again does not change anything
        updates = len(self.executor.ran('scontrol update'))
        response = self.rpc('account', 'BlockAccount', {'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(self.executor.ran('scontrol update')), updates)
        self.assertEqual(self.partitions.acls, {'compute': 'beta,gamma', 'gpu': 'beta,gamma'})

    def test_block_account_list(self):
        self.set_partitions(compute='acme,beta', gpu='acme,beta')
        self.rpc('account', 'BlockAccount', {'account_name': 'acme'})
        self.assertEqual(self.partitions.acls, {'compute': 'beta', 'gpu': 'beta'})

    def test_block_account_divergent_partitions(self):
        self.set_partitions(compute='beta', gpu='acme,beta')
        self.rpc('account', 'BlockAccount', {'account_name': 'acme'})
        self.assertEqual(self.partitions.acls, {'compute': 'beta', 'gpu': 'beta'})

    def test_block_last_account(self):
        self.set_partitions(compute='acme')
        response = self.rpc('account', 'BlockAccount', {'account_name': 'acme'})
        self.assertRpcError(response, 500, 'EMPTY_ALLOW_ACCOUNTS')
        self.assertEqual(self.partitions.acls, {'compute': 'acme'})

    def test_block_unknown_account(self):
        self.set_partitions(compute='ALL')
        response = self.rpc('account', 'BlockAccount', {'account_name': 'nobody'})
        self.assertRpcError(response, 404, 'ACCOUNT_NOT_FOUND')
        self.assertEqual(self.executor.commands, [])

    def test_block_account_controller_down(self):
        self.executor.set(
            'scontrol show partition',
            CommandResult('', 'slurm_load_partitions: Unable to contact slurm controller (connect failure)', 1))
        response = self.rpc('account', 'BlockAccount', {'account_name': 'acme'})
        self.assertRpcError(response, 500, 'SLURMCTLD_FAILED')
        self.assertEqual(response.json()['code'], 'INTERNAL')

    def test_unblock_account(self):
        self.set_partitions(compute='beta', gpu='beta')
        response = self.rpc('account', 'UnblockAccount', {'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.partitions.acls, {'compute': 'beta,acme', 'gpu': 'beta,acme'})

        updates = len(self.executor.ran('scontrol update'))
        self.rpc('account', 'UnblockAccount', {'account_name': 'acme'})
        self.assertEqual(len(self.executor.ran('scontrol update')), updates)

    def test_unblock_account_all(self):
        self.set_partitions(compute='ALL', gpu='ALL')
        response = self.rpc('account', 'UnblockAccount', {'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('scontrol update'), [])

    def test_query_account_block_status(self):
        self.set_partitions(compute='ALL')
        response = self.rpc('account', 'QueryAccountBlockStatus', {'account_name': 'acme'})
        self.assertEqual(response.json(), {'blocked': False})

        self.set_partitions(compute='beta')
        response = self.rpc('account', 'QueryAccountBlockStatus', {'account_name': 'acme'})
        self.assertEqual(response.json(), {'blocked': True})
        response = self.rpc('account', 'QueryAccountBlockStatus', {'account_name': 'beta'})
        self.assertEqual(response.json(), {'blocked': False})

    def test_get_all_accounts_with_users(self):
        self.set_partitions(compute='beta,gamma')
        AssocTable.objects.filter(user='user01', acct='acme').update(max_submit_jobs=0)
        response = self.rpc('account', 'GetAllAccountsWithUsers')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['accounts'], [
            {
                'account_name': 'acme',
                'blocked': True,
                'users': [{'user_id': 'user01', 'user_name': 'user01', 'blocked': True}],
            },
            {
                'account_name': 'beta',
                'blocked': False,
                'users': [{'user_id': 'user02', 'user_name': 'user02', 'blocked': False}],
            },
            {
                'account_name': 'gamma',
                'blocked': False,
                'users': [],
            },
        ])

    def test_delete_account(self):
        response = self.rpc('account', 'DeleteAccount', {'account_name': 'gamma'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [['sacctmgr', '-i', 'delete', 'account', 'name=gamma']])

    def test_delete_account_with_jobs(self):
        self.executor.set('squeue --noheader -A acme', '42 compute test user01 R 1:00 1 node001\n')
        response = self.rpc('account', 'DeleteAccount', {'account_name': 'acme'})
        self.assertRpcError(response, 500, 'RUNNING_JOB_EXISTS')
        self.assertEqual(self.executor.ran('sacctmgr'), [])

    def test_cluster_lock(self):
        self.assertIs(cluster_lock('hpc'), cluster_lock('hpc'))
        self.assertIsNot(cluster_lock('hpc'), cluster_lock('other'))


class UsersTestCase(CustomTestCase):
    def setUp(self):
        super().setUp()
        self.create_qos('normal')
        self.create_account('acme', 'user01')
        self.create_account('beta', 'user02')
        FakePartitions({'compute': 'ALL'}).install(self.executor)

    def test_add_user_to_account(self):
        response = self.rpc('user', 'AddUserToAccount', {'user_id': 'user02', 'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [
            ['sacctmgr', '-i', 'create', 'user', 'name=user02', 'partition=compute', 'account=acme'],
            ['sacctmgr', '-i', 'modify', 'user', 'user02', 'set', 'qos=normal', 'DefaultQOS=normal'],
        ])

    def test_add_user_to_account_already_exists(self):
        response = self.rpc('user', 'AddUserToAccount', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertRpcError(response, 409, 'USER_ALREADY_EXISTS')

    def test_add_user_to_unknown_account(self):
        response = self.rpc('user', 'AddUserToAccount', {'user_id': 'user01', 'account_name': 'nobody'})
        self.assertRpcError(response, 404, 'ACCOUNT_NOT_FOUND')

    def test_add_user(self):
        response = self.rpc('user', 'AddUser', {'user_id': 'user03', 'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(self.executor.ran('sacctmgr -i create user name=user03')), 1)

        response = self.rpc('user', 'AddUser', {'user_id': 'user01', 'account_name': 'beta'})
        self.assertRpcError(response, 409, 'USER_ALREADY_EXISTS')

    def test_remove_user_from_account(self):
        self.create_account('beta', 'user01')
        response = self.rpc('user', 'RemoveUserFromAccount', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [
            ['sacctmgr', '-i', 'update', 'user', 'set', 'DefaultAccount=beta', 'where', 'user=user01'],
            ['sacctmgr', '-i', 'delete', 'user', 'name=user01', 'account=acme'],
        ])

    def test_remove_user_from_last_account(self):
        response = self.rpc('user', 'RemoveUserFromAccount', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [['sacctmgr', '-i', 'delete', 'user', 'name=user01']])

    def test_remove_user_with_running_jobs(self):
        assoc = AssocTable.objects.get(user='user01', acct='acme')
        self.create_job(42, assoc, state=JobTable.StatesJob.RUNNING)
        response = self.rpc('user', 'RemoveUserFromAccount', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertRpcError(response, 500, 'RUNNING_JOB_EXISTS')
        self.assertEqual(self.executor.ran('sacctmgr'), [])

    def test_remove_user_not_in_account(self):
        response = self.rpc('user', 'RemoveUserFromAccount', {'user_id': 'user01', 'account_name': 'beta'})
        self.assertRpcError(response, 404, 'USER_ACCOUNT_NOT_FOUND')

    def test_block_user_in_account(self):
        response = self.rpc('user', 'BlockUserInAccount', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [[
            'sacctmgr', '-i', '-Q', 'modify', 'user', 'where', 'name=user01', 'account=acme', 'set',
            'MaxSubmitJobs=0', 'MaxJobs=0', 'GrpJobs=0', 'GrpSubmit=0', 'GrpSubmitJobs=0',
        ]])

    def test_unblock_user_in_account(self):
        response = self.rpc('user', 'UnblockUserInAccount', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr')[0][-5:], [
            'MaxSubmitJobs=-1', 'MaxJobs=-1', 'GrpJobs=-1', 'GrpSubmit=-1', 'GrpSubmitJobs=-1',
        ])

    def test_block_user_unknown_user(self):
        response = self.rpc('user', 'BlockUserInAccount', {'user_id': 'nobody', 'account_name': 'acme'})
        self.assertRpcError(response, 404, 'USER_NOT_FOUND')

    def test_query_user_in_account_block_status(self):
        response = self.rpc('user', 'QueryUserInAccountBlockStatus', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.json(), {'blocked': False})

        AssocTable.objects.filter(user='user01', acct='acme').update(max_submit_jobs=0)
        response = self.rpc('user', 'QueryUserInAccountBlockStatus', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.json(), {'blocked': True})

        AssocTable.objects.filter(user='user01', acct='acme').update(max_submit_jobs=10)
        response = self.rpc('user', 'QueryUserInAccountBlockStatus', {'user_id': 'user01', 'account_name': 'acme'})
        self.assertEqual(response.json(), {'blocked': False})

    def test_delete_user(self):
        response = self.rpc('user', 'DeleteUser', {'user_id': 'user02'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('sacctmgr'), [['sacctmgr', '-i', 'delete', 'user', 'name=user02']])

    def test_delete_user_with_jobs(self):
        self.executor.set('squeue --noheader -u user02', '43 compute test user02 PD 0:00 1 (Priority)\n')
        response = self.rpc('user', 'DeleteUser', {'user_id': 'user02'})
        self.assertRpcError(response, 500, 'RUNNING_JOB_EXISTS')

    def test_delete_unknown_user(self):
        response = self.rpc('user', 'DeleteUser', {'user_id': 'nobody'})
        self.assertRpcError(response, 404, 'USER_NOT_FOUND')
