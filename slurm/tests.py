from django.db import DatabaseError
from django.db.models import Q
from django.test import SimpleTestCase
from rest_framework.exceptions import ValidationError
from tests.tests import CustomTestCase, FakeExecutor
from database_routers.dbrouters import DbRouter
from slurmadapter.exceptions import CommandFailed, ControllerUnreachable, InvalidArgument, NotFound
from slurmadapter.exceptions import rpc_exception_handler
from slurm import tres
from slurm.accounting import AccountingStore, JobFilter, Predicate, Sort, build_predicates, compile_predicates
from slurm.accounting import page_bounds
from slurm.models import JobTable
from slurm.scheduler import AccountACL, CommandExecutor, CommandResult, Partition, SlurmControl, SlurmScheduler
from slurm.scheduler import gres_count, parse_duration, parse_key_values, parse_memory_mb, parse_time_limit
from slurm.states import StatesJob, derive, mem_req_mb, state_id, state_label
from slurm.tres import TresRegistry


class TresTestCase(SimpleTestCase):
    def test_decode(self):
        self.assertEqual(tres.decode('1=4,2=8192,4=2', 1), 4)
        self.assertEqual(tres.decode('1=4,2=8192,4=2', 4), 2)
        self.assertEqual(tres.decode('1=4,2=8192,4=2', 5), 0)
        self.assertEqual(tres.decode('', 1), 0)
        self.assertEqual(tres.decode(None, 1), 0)
        self.assertEqual(tres.decode('x=y', 1), 0)
        self.assertEqual(tres.decode(' 4=2,1=4 ', 1), 4)
        self.assertEqual(tres.decode('x=y,1=4,2', 1), 4)
        self.assertEqual(tres.decode('1=4', None), 0)

    def test_decode_any(self):
        self.assertEqual(tres.decode_any('1=4,1002=2', [1001, 1002]), 2)
        self.assertEqual(tres.decode_any('1=4,1001=1,1002=2', [1001, 1002]), 1)
        self.assertEqual(tres.decode_any('1=4', [1001, 1002]), 0)
        self.assertEqual(tres.decode_any('1=4', []), 0)


class StatesTestCase(SimpleTestCase):
    def test_labels(self):
        labels = ['PENDING', 'RUNNING', 'SUSPENDED', 'COMPLETED', 'CANCELLED', 'FAILED', 'TIMEOUT', 'NODE_FAIL']
        for code, label in enumerate(labels):
            self.assertEqual(state_label(code), label)
            self.assertEqual(state_id(label), code)

    def test_aliases(self):
        self.assertEqual(state_id('CANCELED'), StatesJob.CANCELLED)
        self.assertEqual(state_id('suspend'), StatesJob.SUSPENDED)
        self.assertEqual(state_id('COMPLETING'), StatesJob.RUNNING)
        self.assertEqual(state_id('UNKNOWN'), StatesJob.COMPLETED)
        self.assertEqual(state_label(11), 'COMPLETED')

    def test_mem_req(self):
        self.assertEqual(mem_req_mb(4000), 4000)
        # per cpu memory flag
        self.assertEqual(mem_req_mb(9223372036854779808), 0)


class DeriveTestCase(SimpleTestCase):
    registry = TresRegistry(cpu=1, mem=2, node=4, gpus=[1001])

    def job(self, state, **kwargs):
        values = {
            'state': state,
            'tres_req': '1=8,2=16000,4=2',
            'tres_alloc': '1=8,2=16000,4=2,1001=4',
            'time_start': 1000,
            'time_end': 0,
        }
        values.update(kwargs)
        return JobTable(**values)

    def test_pending(self):
        derived = derive(self.job(StatesJob.PENDING, tres_alloc=''), self.registry, True, live_reason='Priority')
        self.assertEqual(derived.state, 'PENDING')
        self.assertEqual(derived.reason, 'Priority')
        self.assertEqual(derived.nodes_req, 2)
        self.assertEqual(derived.cpus_alloc, 0)
        self.assertEqual(derived.elapsed_seconds, 0)

    def test_running(self):
        derived = derive(self.job(StatesJob.RUNNING), self.registry, True, now=1600)
        self.assertEqual(derived.reason, 'Running')
        self.assertEqual(derived.cpus_alloc, 8)
        self.assertEqual(derived.mem_alloc_mb, 16000)
        self.assertEqual(derived.nodes_alloc, 2)
        self.assertEqual(derived.gpus_alloc, 4)
        self.assertEqual(derived.elapsed_seconds, 600)

    def test_suspended(self):
        derived = derive(self.job(StatesJob.SUSPENDED), self.registry, True, live_reason='Preempted', now=1600)
        self.assertEqual(derived.state, 'SUSPENDED')
        self.assertEqual(derived.reason, 'Preempted')
        self.assertEqual(derived.cpus_alloc, 8)
        self.assertEqual(derived.elapsed_seconds, 0)

    def test_terminal(self):
        for code in [StatesJob.COMPLETED, StatesJob.CANCELLED, StatesJob.FAILED, StatesJob.TIMEOUT,
                     StatesJob.NODE_FAIL]:
            derived = derive(self.job(code, time_end=4600), self.registry, True)
            self.assertEqual(derived.reason, 'end of job')
            self.assertEqual(derived.elapsed_seconds, 3600)
            self.assertEqual(derived.gpus_alloc, 4)

    def test_terminal_never_started(self):
        derived = derive(self.job(StatesJob.CANCELLED, time_start=0, time_end=4600), self.registry, True)
        self.assertEqual(derived.elapsed_seconds, 0)

    def test_nodes_req_is_requested_count(self):
        derived = derive(self.job(StatesJob.RUNNING, tres_alloc='1=8,2=16000,4=3'), self.registry, True, now=1600)
        self.assertEqual(derived.nodes_req, 2)
        self.assertEqual(derived.nodes_alloc, 3)

    def test_no_gpu_accounting(self):
        derived = derive(self.job(StatesJob.RUNNING), self.registry, False, now=1600)
        self.assertEqual(derived.gpus_alloc, 0)
        self.assertEqual(derived.cpus_alloc, 8)


class QueryBuilderTestCase(SimpleTestCase):
    def test_page_bounds(self):
        self.assertEqual(page_bounds(1, 10), (0, 10))
        self.assertEqual(page_bounds(3, 10), (20, 10))
        self.assertEqual(page_bounds(0, 10), (0, 10))

    def test_predicates(self):
        job_filter = JobFilter(
            accounts=['acme'], states=['running', 'CANCELED'], job_name='test', submit_start=100, end_end=200)
        self.assertEqual(build_predicates(job_filter, uids=[1001]), [
            Predicate('account', 'in', ['acme']),
            Predicate('id_user', 'in', [1001]),
            Predicate('state', 'in', [1, 4]),
            Predicate('time_end', '<=', 200),
            Predicate('time_submit', '>=', 100),
            Predicate('job_name', '=', 'test'),
        ])
        self.assertEqual(build_predicates(JobFilter()), [])

    def test_compile_predicates(self):
        q = compile_predicates([Predicate('account', 'in', ['acme']), Predicate('time_end', '>=', 100)])
        self.assertEqual(q, Q(account__in=['acme']) & Q(time_end__gte=100))
        self.assertEqual(compile_predicates([]), Q())

    def test_only_live_states(self):
        self.assertTrue(JobFilter(states=['PENDING', 'RUNNING']).only_live_states())
        self.assertFalse(JobFilter(states=['PENDING', 'COMPLETED']).only_live_states())
        self.assertFalse(JobFilter().only_live_states())

    def test_sort(self):
        self.assertEqual(Sort().order_by(), 'job_db_inx')
        self.assertEqual(Sort('submit_time', descending=True).order_by(), '-time_submit')
        with self.assertRaises(InvalidArgument):
            Sort('reason').order_by()


class AccountingStoreTestCase(CustomTestCase):
    def setUp(self):
        super().setUp()
        self.create_tres()
        self.assoc = self.create_account('acme', 'user01')

    def test_convert_text(self):
        self.assertFalse(AccountingStore(encoding='utf8mb4').convert_text())
        self.assertTrue(AccountingStore(encoding='latin1').convert_text())

    def test_converted_text_columns(self):
        self.create_job(1, self.assoc, job_name='calcul-été', work_dir='/home/user01/données')
        job = AccountingStore(encoding='latin1').jobs().get(id_job=1)
        self.assertEqual(job.name_text, 'calcul-été')
        self.assertEqual(job.work_dir_text, '/home/user01/données')

    def test_job_name_filter_on_converted_text(self):
        predicates = [Predicate('job_name', '=', '作业'), Predicate('account', 'in', ['acme'])]
        self.assertEqual(AccountingStore(encoding='latin1').text_predicates(predicates), [
            Predicate('name_text', '=', '作业'),
            Predicate('account', 'in', ['acme']),
        ])
        self.assertEqual(AccountingStore(encoding='utf8mb4').text_predicates(predicates), predicates)

        self.create_job(1, self.assoc, job_name='作业')
        self.create_job(2, self.assoc, job_name='other')
        for encoding in ['latin1', 'utf8mb4']:
            jobs, _ = AccountingStore(encoding=encoding).query_jobs(
                build_predicates(JobFilter(job_name='作业')))
            self.assertEqual([job.id_job for job in jobs], [1])

    def test_job_by_id_latest(self):
        self.create_job(1, self.assoc, time_submit=100, state=StatesJob.CANCELLED)
        self.create_job(1, self.assoc, time_submit=200, state=StatesJob.PENDING)
        self.assertEqual(AccountingStore().job_by_id(1).state, StatesJob.PENDING)
        self.assertIsNone(AccountingStore().job_by_id(2))

    def test_tres_registry(self):
        registry = AccountingStore().tres_registry()
        self.assertEqual((registry.cpu, registry.mem, registry.node, registry.gpus), (1, 2, 4, [1001]))

    def test_associated_accounts(self):
        self.create_account('beta', 'user02')
        self.create_account('gamma')
        store = AccountingStore()
        self.assertEqual(store.associated_accounts(), ['acme', 'beta', 'gamma'])
        self.assertEqual(store.associated_accounts(exclude='beta'), ['acme', 'gamma'])

    def test_users_of_account(self):
        self.create_account('acme', 'user02', max_submit_jobs=0)
        self.assertEqual(AccountingStore().users_of_account('acme'), [('user01', False), ('user02', True)])


class ParsersTestCase(SimpleTestCase):
    def test_parse_key_values(self):
        self.assertEqual(
            parse_key_values('PartitionName=gpu AllowAccounts=a,b TRES=cpu=4,mem=1G Flag'),
            {'PartitionName': 'gpu', 'AllowAccounts': 'a,b', 'TRES': 'cpu=4,mem=1G'})

    def test_parse_duration(self):
        self.assertEqual(parse_duration('10:00'), 600)
        self.assertEqual(parse_duration('1:00:00'), 3600)
        self.assertEqual(parse_duration('2-01:00:00'), 2 * 86400 + 3600)
        self.assertEqual(parse_duration('30'), 1800)
        self.assertEqual(parse_duration('N/A'), 0)

    def test_parse_time_limit(self):
        self.assertEqual(parse_time_limit('1:00:00'), 60)
        self.assertEqual(parse_time_limit('UNLIMITED'), 0)
        self.assertIsNone(parse_time_limit('INVALID'))

    def test_parse_memory(self):
        self.assertEqual(parse_memory_mb('4000M'), 4000)
        self.assertEqual(parse_memory_mb('250G'), 256000)
        self.assertEqual(parse_memory_mb('1T'), 1048576)
        self.assertEqual(parse_memory_mb('1024'), 1024)
        self.assertEqual(parse_memory_mb(''), 0)

    def test_gres_count(self):
        self.assertEqual(gres_count('gres/gpu:2'), 2)
        self.assertEqual(gres_count('gpu:a100:4(S:0-1)'), 4)
        self.assertEqual(gres_count('(null)'), 0)
        self.assertEqual(gres_count('N/A'), 0)

    def test_account_acl(self):
        self.assertTrue(AccountACL.parse('ALL').unrestricted)
        self.assertTrue(AccountACL.parse('').unrestricted)
        acl = AccountACL.parse('acme,beta')
        self.assertIn('acme', acl)
        self.assertNotIn('gamma', acl)
        self.assertEqual(str(acl.without('acme')), 'beta')
        self.assertEqual(str(acl.with_account('gamma')), 'acme,beta,gamma')
        self.assertIn('anything', AccountACL())

    def test_partition(self):
        partition = Partition(parse_key_values(
            'PartitionName=gpu AllowAccounts=ALL AllowQos=ALL QoS=gpu TotalCPUs=128 TotalNodes=4 '
            'TRES=cpu=128,mem=2T,node=4,billing=128,gres/gpu=16'))
        self.assertEqual(partition.mem_mb, 2097152)
        self.assertEqual(partition.gpus, 16)
        self.assertEqual(partition.qos(['normal', 'high']), ['gpu'])


class SchedulerTestCase(SimpleTestCase):
    def test_controller_down(self):
        executor = FakeExecutor({
            'squeue': CommandResult('', 'squeue: error: Unable to contact slurm controller (connect failure)', 1),
        })
        with self.assertRaises(ControllerUnreachable):
            SlurmScheduler(executor).account_has_jobs('acme')

    def test_command_failed(self):
        executor = FakeExecutor({'sacctmgr': CommandResult('', 'sacctmgr: error: Nothing deleted', 1)})
        with self.assertRaises(CommandFailed) as cm:
            SlurmControl(executor).delete_account('acme')
        self.assertEqual(cm.exception.reason, 'COMMAND_EXEC_FAILED')

    def test_pending_reasons(self):
        executor = FakeExecutor({
            'squeue': '12|Priority\n13|(AssocGrpCpuLimit)\n'
                      '14|Job\'s account not permitted to use this partition (gpu allows beta not acme)\n',
        })
        self.assertEqual(SlurmScheduler(executor).pending_reasons(), {
            12: 'Priority',
            13: '(AssocGrpCpuLimit)',
            14: 'Job\'s account not permitted to use this partition',
        })

    def test_running_job_ids(self):
        executor = FakeExecutor({'squeue --noheader -t running': '12\n13\n\n'})
        self.assertEqual(SlurmScheduler(executor).running_job_ids(), {12, 13})
        SlurmScheduler(executor).running_job_ids(users=['user01'])
        self.assertEqual(executor.commands[-1],
                         ['squeue', '--noheader', '-u', 'user01', '-t', 'running', '--format=%i'])

    def test_gpu_accounting(self):
        executor = FakeExecutor({'scontrol show config': 'SelectType = select/cons_res\n'})
        self.assertTrue(SlurmScheduler(executor).gpu_accounting())
        executor = FakeExecutor({'scontrol show config': 'SelectType = select/linear\n'})
        self.assertFalse(SlurmScheduler(executor).gpu_accounting())

    def test_run_as_user(self):
        control = SlurmControl(FakeExecutor(), run_as_user=['sudo', '-u', '{user}'])
        self.assertEqual(control.as_user('user01', ['scancel', '42']), ['sudo', '-u', 'user01', 'scancel', '42'])

    def test_command_executor(self):
        result = CommandExecutor(timeout=10).run(['echo', 'hello'])
        self.assertEqual(result, CommandResult('hello\n', '', 0))

    def test_command_executor_timeout(self):
        with self.assertRaises(CommandFailed) as cm:
            CommandExecutor(timeout=0.1).run(['sleep', '5'])
        self.assertEqual(cm.exception.reason, 'COMMAND_TIMEOUT')

    def test_command_executor_missing_command(self):
        with self.assertRaises(CommandFailed):
            CommandExecutor().run(['/nonexistent/sbatch'])


class ExceptionHandlerTestCase(SimpleTestCase):
    def test_adapter_error(self):
        response = rpc_exception_handler(NotFound('Job 42 does not exist.', reason='JOB_NOT_FOUND'), {})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data, {
            'code': 'NOT_FOUND',
            'reason': 'JOB_NOT_FOUND',
            'message': 'Job 42 does not exist.',
        })

    def test_validation_error(self):
        response = rpc_exception_handler(ValidationError({'job_id': ['This field is required.']}), {})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'INVALID_ARGUMENT')
        self.assertEqual(response.data['reason'], 'INVALID_REQUEST')
        self.assertIn('job_id', response.data['errors'])

    def test_database_error(self):
        response = rpc_exception_handler(DatabaseError('Lost connection'), {})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['reason'], 'SQL_QUERY_FAILED')
        self.assertEqual(response.data['message'], 'Lost connection')


class DbRouterTestCase(SimpleTestCase):
    def test_routing(self):
        router = DbRouter()
        self.assertEqual(router.db_for_read(JobTable), 'slurm')
        self.assertEqual(router.db_for_write(JobTable), 'slurm')
        self.assertTrue(router.allow_migrate('slurm', 'slurm'))
        self.assertFalse(router.allow_migrate('default', 'slurm'))
        self.assertTrue(router.allow_migrate('default', 'auth'))
        self.assertFalse(router.allow_migrate('slurm', 'auth'))
