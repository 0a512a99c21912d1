from django.test import TestCase
from django.contrib.auth import get_user_model
from django.conf import settings
from django.test import Client
from unittest import mock
from slurmadapter.context import ClusterConfig, SlurmContext
from slurm.models import AcctTable, AssocTable, JobTable, QosTable, TresTable, UserTable
from slurm.scheduler import CommandResult

SLURM_COMMANDS = ['squeue', 'scontrol', 'sinfo', 'sacctmgr', 'sbatch', 'scancel']


class FakeExecutor:
    """
    Return canned outputs for the slurm commands and record the commands.

    Responses are keyed by a tuple of the first arguments of the command, the
    longest matching key wins. A response is the stdout of the command, a
    CommandResult or a callable receiving the arguments and the input.
    Commands run as another user are matched without their sudo prefix.
    """

    def __init__(self, responses=None):
        self.responses = {}
        self.commands = []
        self.inputs = []
        for key, response in (responses or {}).items():
            self.set(key, response)

    def set(self, key, response):
        if isinstance(key, str):
            key = tuple(key.split())
        self.responses[key] = response

    def run(self, args, input=None, timeout=None):
        self.commands.append(list(args))
        self.inputs.append(input)
        command = list(args)
        for i, arg in enumerate(command):
            if arg in SLURM_COMMANDS:
                command = command[i:]
                break
        match = None
        for key in self.responses:
            if tuple(command[:len(key)]) == key and (match is None or len(key) > len(match)):
                match = key
        if match is None:
            return CommandResult('', '', 0)
        response = self.responses[match]
        if callable(response):
            response = response(command, input)
        if isinstance(response, str):
            return CommandResult(response, '', 0)
        return response

    def ran(self, prefix):
        """Commands that were run and start with prefix, ignoring the sudo prefix"""
        if isinstance(prefix, str):
            prefix = prefix.split()
        found = []
        for command in self.commands:
            for i, arg in enumerate(command):
                if arg in SLURM_COMMANDS:
                    command = command[i:]
                    break
            if command[:len(prefix)] == list(prefix):
                found.append(command)
        return found


class FakeIdentity:
    def __init__(self, users=None):
        self.users = dict(users or {})

    def uid(self, username):
        return self.users.get(username)

    def username(self, uid):
        for name, user_uid in self.users.items():
            if user_uid == uid:
                return name
        return str(uid)

    def home(self, username):
        return '/home/{}'.format(username)


def make_context(executor=None, identity=None, **config):
    config.setdefault('cluster_name', settings.CLUSTER_NAME)
    config.setdefault('partition_descriptions', settings.SLURM_PARTITION_DESCRIPTIONS)
    config.setdefault('run_as_user', settings.SLURM_RUN_AS_USER)
    config.setdefault('module_path', '/etc/profile.d/modules.sh')
    return SlurmContext(
        ClusterConfig(**config),
        executor or FakeExecutor(),
        identity or FakeIdentity({'user01': 1001, 'user02': 1002}))


class CustomTestCase(TestCase):
    databases = {'default', 'slurm'}

    def setUp(self):
        self.testuser = get_user_model().objects.create_user(
            username=settings.TESTS_USER,
            password='userpassword')
        self.testadmin = get_user_model().objects.create_superuser(
            username=settings.TESTS_ADMIN,
            password='adminpassword')

        self.user_client = Client()
        self.user_client.login(username=settings.TESTS_USER, password='userpassword')
        self.admin_client = Client()
        self.admin_client.login(username=settings.TESTS_ADMIN, password='adminpassword')

        self.executor = FakeExecutor()
        self.identity = FakeIdentity({'user01': 1001, 'user02': 1002})
        self.context = make_context(self.executor, self.identity)
        patcher = mock.patch.object(SlurmContext, 'from_settings', return_value=self.context)
        patcher.start()
        self.addCleanup(patcher.stop)

    def assertJSONKeys(self, response, keys):
        self.assertEqual(set(response.json().keys()), set(keys))

    def assertRpcError(self, response, status, reason):
        self.assertEqual(response.status_code, status)
        self.assertEqual(response.json()['reason'], reason)

    def rpc(self, service, method, data=None, client=None):
        client = client or self.admin_client
        return client.post('/api/{}/{}/'.format(service, method), data or {}, content_type='application/json')

    # rows of the accounting store

    def create_tres(self):
        TresTable.objects.create(id=1, type='cpu')
        TresTable.objects.create(id=2, type='mem')
        TresTable.objects.create(id=4, type='node')
        TresTable.objects.create(id=1001, type='gres', name='gpu')

    def create_qos(self, *names):
        return [QosTable.objects.create(name=name) for name in names]

    def create_account(self, name, *users, max_submit_jobs=None):
        AcctTable.objects.get_or_create(name=name)
        assoc, _ = AssocTable.objects.get_or_create(acct=name, user='')
        for user in users:
            UserTable.objects.get_or_create(name=user)
            assoc = AssocTable.objects.create(acct=name, user=user, max_submit_jobs=max_submit_jobs)
        return assoc

    def create_job(self, id_job, assoc, **kwargs):
        kwargs.setdefault('id_user', 1001)
        kwargs.setdefault('account', assoc.acct)
        kwargs.setdefault('state', JobTable.StatesJob.COMPLETED)
        kwargs.setdefault('partition', 'compute')
        kwargs.setdefault('time_submit', 1700000000 + id_job)
        return JobTable.objects.create(id_job=id_job, id_assoc=assoc, **kwargs)
