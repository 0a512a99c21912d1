from unittest import mock
from django.test import SimpleTestCase
from tests.tests import CustomTestCase
from slurm.accounting import JobFilter
from slurm.models import JobTable
from slurm.scheduler import CommandResult
from jobs.engine import JobQueryEngine, make_sort, project
from jobs.services import insert_chdir, parse_job_id

StatesJob = JobTable.StatesJob

CONS_TRES = 'SelectType              = select/cons_tres\nSlurmctldPort           = 6817\n'
LINEAR = 'SelectType              = select/linear\n'

SQUEUE_LIVE = (
    'gres/gpu:2|acme|101|4|1|train|1:00:00|8G|10:00|compute|normal|'
    '2023-11-14T22:13:20|RUNNING|user01|/home/user01|node001\n'
    'N/A|acme|102|2|1|wait|UNLIMITED|4000M|0:00|compute|normal|'
    'N/A|PENDING|user01|/home/user01|\n'
)


class JobsTestCase(CustomTestCase):
    def setUp(self):
        super().setUp()
        self.create_tres()
        self.create_qos('normal')
        self.assoc = self.create_account('acme', 'user01')
        self.executor.set('scontrol show config', CONS_TRES)

    def test_anonymous_user(self):
        response = self.client.post('/api/job/GetJobById/', {'job_id': 1}, content_type='application/json')
        self.assertEqual(response.status_code, 403)

    def test_user_is_not_staff(self):
        response = self.rpc('job', 'GetJobById', {'job_id': 1}, client=self.user_client)
        self.assertEqual(response.status_code, 403)

    def test_get_job_by_id_completed(self):
        self.create_job(
            100, self.assoc,
            job_name='test',
            state=StatesJob.COMPLETED,
            cpus_req=4,
            mem_req=8192,
            timelimit=60,
            time_start=1700000000,
            time_end=1700003600,
            nodelist='node001',
            tres_req='1=4,2=8192,4=1',
            tres_alloc='1=4,2=8192,4=1,1001=2')
        response = self.rpc('job', 'GetJobById', {'job_id': 100})
        self.assertEqual(response.status_code, 200)
        self.assertJSONKeys(response, ['job'])
        job = response.json()['job']
        self.assertEqual(job['job_id'], 100)
        self.assertEqual(job['name'], 'test')
        self.assertEqual(job['user'], 'user01')
        self.assertEqual(job['account'], 'acme')
        self.assertEqual(job['state'], 'COMPLETED')
        self.assertEqual(job['reason'], 'end of job')
        self.assertEqual(job['cpus_alloc'], 4)
        self.assertEqual(job['mem_alloc_mb'], 8192)
        self.assertEqual(job['nodes_alloc'], 1)
        self.assertEqual(job['gpus_alloc'], 2)
        self.assertEqual(job['elapsed_seconds'], 3600)
        self.assertEqual(job['start_time'], '2023-11-14T22:13:20Z')
        # a finished job is not asked to slurmctld
        self.assertEqual(self.executor.ran('scontrol show job'), [])

    def test_get_job_by_id_without_gpu_accounting(self):
        self.executor.set('scontrol show config', LINEAR)
        self.create_job(100, self.assoc, tres_alloc='1=4,2=8192,4=1,1001=2')
        job = self.rpc('job', 'GetJobById', {'job_id': 100}).json()['job']
        self.assertEqual(job['gpus_alloc'], 0)
        self.assertEqual(job['cpus_alloc'], 4)

    def test_get_job_by_id_pending(self):
        self.create_job(42, self.assoc, state=StatesJob.PENDING, tres_req='1=1,2=1000,4=2')
        self.executor.set(
            'scontrol show job 42',
            'JobId=42 JobName=test UserId=user01(1001) JobState=PENDING Reason=Priority '
            'Dependency=(null) StdOut=/home/user01/slurm-42.out StdErr=/home/user01/slurm-42.err\n')
        job = self.rpc('job', 'GetJobById', {'job_id': 42}).json()['job']
        self.assertEqual(job['state'], 'PENDING')
        self.assertEqual(job['reason'], 'Priority')
        self.assertEqual(job['nodes_req'], 2)
        self.assertEqual(job['cpus_alloc'], 0)
        self.assertEqual(job['stdout_path'], '/home/user01/slurm-42.out')
        self.assertEqual(job['stderr_path'], '/home/user01/slurm-42.err')

    def test_get_job_by_id_not_found(self):
        response = self.rpc('job', 'GetJobById', {'job_id': 404})
        self.assertRpcError(response, 404, 'JOB_NOT_FOUND')

    def test_get_job_by_id_fields(self):
        self.create_job(100, self.assoc, job_name='test', tres_alloc='1=4')
        job = self.rpc('job', 'GetJobById', {'job_id': 100, 'fields': ['job_id', 'state']}).json()['job']
        self.assertEqual(job['job_id'], 100)
        self.assertEqual(job['state'], 'COMPLETED')
        self.assertEqual(job['name'], '')
        self.assertEqual(job['cpus_alloc'], 0)
        self.assertIsNone(job['submit_time'])

    def test_get_job_by_id_unknown_field(self):
        response = self.rpc('job', 'GetJobById', {'job_id': 100, 'fields': ['job_id', 'secret']})
        self.assertRpcError(response, 400, 'INVALID_REQUEST')

    def test_get_jobs_paginated(self):
        for id_job in [1, 2, 3]:
            self.create_job(id_job, self.assoc)
        response = self.rpc('job', 'GetJobs', {
            'page_info': {'page': 1, 'page_size': 2},
            'sort': {'field': 'job_id', 'order': 'DESC'},
        })
        self.assertEqual(response.status_code, 200)
        self.assertJSONKeys(response, ['jobs', 'total_count'])
        self.assertEqual(response.json()['total_count'], 3)
        self.assertEqual([job['job_id'] for job in response.json()['jobs']], [3, 2])

        response = self.rpc('job', 'GetJobs', {
            'page_info': {'page': 2, 'page_size': 2},
            'sort': {'field': 'job_id', 'order': 'DESC'},
        })
        self.assertEqual([job['job_id'] for job in response.json()['jobs']], [1])

    def test_get_jobs_without_pagination(self):
        self.create_job(1, self.assoc)
        response = self.rpc('job', 'GetJobs', {})
        self.assertJSONKeys(response, ['jobs'])
        self.assertEqual(len(response.json()['jobs']), 1)

    def test_get_jobs_filters(self):
        other = self.create_account('beta', 'user02')
        self.create_job(1, self.assoc, state=StatesJob.COMPLETED, time_end=1700001000)
        self.create_job(2, self.assoc, state=StatesJob.FAILED, time_end=1700002000)
        self.create_job(3, other, id_user=1002, state=StatesJob.COMPLETED, time_end=1700003000)

        jobs = self.rpc('job', 'GetJobs', {'filter': {'accounts': ['acme']}}).json()['jobs']
        self.assertEqual([job['job_id'] for job in jobs], [1, 2])

        jobs = self.rpc('job', 'GetJobs', {'filter': {'users': ['user02']}}).json()['jobs']
        self.assertEqual([job['job_id'] for job in jobs], [3])

        jobs = self.rpc('job', 'GetJobs', {'filter': {'states': ['COMPLETED']}}).json()['jobs']
        self.assertEqual([job['job_id'] for job in jobs], [1, 3])

        jobs = self.rpc('job', 'GetJobs', {'filter': {
            'end_time': {'start_time': '2023-11-14T22:31:00Z', 'end_time': '2023-11-14T23:00:00Z'},
        }}).json()['jobs']
        self.assertEqual([job['job_id'] for job in jobs], [2])

    def test_get_jobs_unknown_user(self):
        self.create_job(1, self.assoc)
        response = self.rpc('job', 'GetJobs', {'filter': {'users': ['nobody']}})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['jobs'], [])

    def test_get_jobs_unknown_state(self):
        response = self.rpc('job', 'GetJobs', {'filter': {'states': ['SLEEPING']}})
        self.assertRpcError(response, 400, 'INVALID_REQUEST')

    def test_get_jobs_unknown_sort_field(self):
        self.create_job(1, self.assoc)
        response = self.rpc('job', 'GetJobs', {'sort': {'field': 'reason'}})
        self.assertRpcError(response, 400, 'INVALID_SORT_FIELD')

    def test_get_jobs_canceled_spelling(self):
        self.create_job(1, self.assoc, state=StatesJob.CANCELLED)
        jobs = self.rpc('job', 'GetJobs', {'filter': {'states': ['CANCELED']}}).json()['jobs']
        self.assertEqual([job['state'] for job in jobs], ['CANCELLED'])

    def test_get_jobs_skips_vanished_jobs(self):
        self.create_job(1, self.assoc, state=StatesJob.PENDING)
        self.create_job(2, self.assoc, state=StatesJob.PENDING)
        self.executor.set('squeue --noheader -t pending,suspended', '2|Resources\n')
        self.executor.set('squeue --noheader -j 1', CommandResult('', 'slurm_load_jobs error: Invalid job id', 1))
        jobs = self.rpc('job', 'GetJobs', {'filter': {'accounts': ['acme']}}).json()['jobs']
        self.assertEqual([job['job_id'] for job in jobs], [2])
        self.assertEqual(jobs[0]['reason'], 'Resources')

    def test_get_jobs_skips_ended_running_jobs(self):
        self.create_job(7, self.assoc, state=StatesJob.RUNNING, time_start=1700000000)
        self.create_job(8, self.assoc, state=StatesJob.RUNNING, time_start=1700000000)
        self.create_job(9, self.assoc, state=StatesJob.RUNNING, time_start=1700000000)
        self.executor.set('squeue --noheader -t running', '8\n')
        self.executor.set('squeue --noheader -j 7', CommandResult('', 'slurm_load_jobs error: Invalid job id', 1))
        # started after the list of running jobs was read
        self.executor.set('squeue --noheader -j 9', '9 compute test user01 R 0:05 1 node001\n')
        jobs = self.rpc('job', 'GetJobs', {'filter': {'accounts': ['acme']}}).json()['jobs']
        self.assertEqual([job['job_id'] for job in jobs], [8, 9])
        self.assertEqual(len(self.executor.ran('squeue --noheader -t running')), 1)
        self.assertEqual(self.executor.ran('squeue --noheader -j 8'), [])

    def test_get_jobs_live(self):
        self.create_job(101, self.assoc, state=StatesJob.RUNNING, time_submit=1700000100, timelimit=60)
        self.executor.set('squeue --noheader -u user01 -t RUNNING,PENDING', SQUEUE_LIVE)
        self.executor.set('squeue --noheader -u user01 -t pending,suspended', '102|(Priority)\n')
        response = self.rpc('job', 'GetJobs', {
            'filter': {'users': ['user01'], 'states': ['RUNNING', 'PENDING']},
            'page_info': {'page': 1, 'page_size': 10},
        })
        self.assertEqual(response.status_code, 200)
        # no pagination on the live path
        self.assertJSONKeys(response, ['jobs'])
        running, pending = response.json()['jobs']

        self.assertEqual(running['job_id'], 101)
        self.assertEqual(running['state'], 'RUNNING')
        self.assertEqual(running['reason'], 'Running')
        self.assertEqual(running['submit_time'], '2023-11-14T22:15:00Z')
        self.assertEqual(running['time_limit_minutes'], 60)
        self.assertEqual(running['gpus_alloc'], 2)
        self.assertEqual(running['mem_alloc_mb'], 8192)
        self.assertEqual(running['elapsed_seconds'], 600)
        self.assertEqual(running['node_list'], 'node001')

        self.assertEqual(pending['job_id'], 102)
        self.assertEqual(pending['state'], 'PENDING')
        self.assertEqual(pending['reason'], '(Priority)')
        self.assertEqual(pending['time_limit_minutes'], 0)
        self.assertEqual(pending['cpus_alloc'], 0)
        self.assertIsNotNone(pending['submit_time'])

    def test_get_jobs_live_sorted(self):
        self.executor.set('squeue --noheader -u user01 -t RUNNING,PENDING', SQUEUE_LIVE)
        response = self.rpc('job', 'GetJobs', {
            'filter': {'users': ['user01'], 'states': ['RUNNING', 'PENDING']},
            'sort': {'field': 'job_id', 'order': 'DESC'},
        })
        self.assertEqual([job['job_id'] for job in response.json()['jobs']], [102, 101])

    def test_get_jobs_live_unknown_user(self):
        response = self.rpc('job', 'GetJobs', {'filter': {'users': ['nobody'], 'states': ['RUNNING']}})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['jobs'], [])
        self.assertEqual(self.executor.ran('squeue'), [])

        self.executor.set('squeue --noheader -u user01 -t RUNNING,PENDING', SQUEUE_LIVE)
        response = self.rpc('job', 'GetJobs', {
            'filter': {'users': ['nobody', 'user01'], 'states': ['RUNNING', 'PENDING']},
        })
        self.assertEqual([job['job_id'] for job in response.json()['jobs']], [101, 102])
        self.assertEqual(self.executor.ran('squeue --noheader -u')[0][:4], ['squeue', '--noheader', '-u', 'user01'])

    def test_get_jobs_live_submit_time(self):
        self.create_job(101, self.assoc, state=StatesJob.RUNNING, time_submit=1700000100)
        self.executor.set('squeue --noheader -u user01 -t RUNNING,PENDING', SQUEUE_LIVE)
        engine = JobQueryEngine(self.context)
        with mock.patch('jobs.engine.time') as mocked_time:
            mocked_time.time.return_value = 1700000500
            jobs, _ = engine.get_jobs(JobFilter(users=['user01'], states=['RUNNING', 'PENDING']))
        submit_times = {job['job_id']: job['submit_time'] for job in jobs}
        # job 102 is not in the job table yet
        self.assertEqual(submit_times, {101: 1700000100, 102: 1700000500})

    def test_get_jobs_controller_down(self):
        self.executor.set(
            'squeue --noheader -u user01',
            CommandResult('', 'slurm_load_jobs error: Unable to contact slurm controller', 1))
        response = self.rpc('job', 'GetJobs', {'filter': {'users': ['user01'], 'states': ['RUNNING']}})
        self.assertRpcError(response, 500, 'SLURMCTLD_FAILED')

    def test_submit_job(self):
        self.executor.set('sbatch', 'Submitted batch job 42\n')
        response = self.rpc('job', 'SubmitJob', {
            'user_id': 'user01',
            'account': 'acme',
            'partition': 'compute',
            'qos': 'normal',
            'job_name': 'test',
            'node_count': 1,
            'core_count': 1,
            'gpu_count': 1,
            'time_limit_minutes': 30,
            'script': 'srun hostname',
            'working_directory': 'work',
            'extra_options': ['--mem=1G'],
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['job_id'], 42)
        script = response.json()['generated_script']
        self.assertEqual(script.split('\n'), [
            '#!/bin/bash',
            '#SBATCH -A acme',
            '#SBATCH --partition=compute',
            '#SBATCH --qos=normal',
            '#SBATCH -J test',
            '#SBATCH --nodes=1',
            '#SBATCH -c 1',
            '#SBATCH --time=30',
            '#SBATCH --chdir=/home/user01/work',
            '#SBATCH --gres=gpu:1',
            '#SBATCH --mem=1G',
            '',
            'source /etc/profile.d/modules.sh',
            'srun hostname',
            '',
        ])
        self.assertEqual(self.executor.commands[-1], ['sudo', '-n', '-u', 'user01', '--', 'sbatch'])
        self.assertEqual(self.executor.inputs[-1], script)

        # the job is pending until it is scheduled
        self.create_job(42, self.assoc, state=StatesJob.PENDING)
        self.executor.set('scontrol show job 42', 'JobId=42 JobState=PENDING Reason=None\n')
        job = self.rpc('job', 'GetJobById', {'job_id': 42}).json()['job']
        self.assertEqual(job['state'], 'PENDING')

    def test_submit_job_sbatch_failed(self):
        self.executor.set('sbatch', CommandResult('', 'sbatch: error: Invalid account\n', 1))
        response = self.rpc('job', 'SubmitJob', {
            'user_id': 'user01',
            'account': 'acme',
            'partition': 'compute',
            'job_name': 'test',
            'node_count': 1,
            'core_count': 1,
            'script': 'srun hostname',
            'working_directory': '/scratch/user01',
        })
        self.assertRpcError(response, 500, 'SBATCH_FAILED')
        self.assertEqual(response.json()['code'], 'UNKNOWN')
        self.assertEqual(response.json()['message'], 'sbatch: error: Invalid account')

    def test_submit_job_unknown_user(self):
        response = self.rpc('job', 'SubmitJob', {
            'user_id': 'nobody',
            'account': 'acme',
            'partition': 'compute',
            'job_name': 'test',
            'node_count': 1,
            'core_count': 1,
            'script': 'srun hostname',
            'working_directory': '/tmp',
        })
        self.assertRpcError(response, 404, 'USER_NOT_FOUND')
        self.assertEqual(self.executor.ran('sbatch'), [])

    def test_submit_job_illegal_account(self):
        response = self.rpc('job', 'SubmitJob', {
            'user_id': 'user01',
            'account': 'acme;reboot',
            'partition': 'compute',
            'job_name': 'test',
            'node_count': 1,
            'core_count': 1,
            'script': 'srun hostname',
            'working_directory': '/tmp',
        })
        self.assertRpcError(response, 400, 'ACCOUNT_USER_CONTAIN_ILLEGAL_CHARACTERS')

    def test_submit_script_as_job(self):
        self.executor.set('sbatch', 'Submitted batch job 43\n')
        response = self.rpc('job', 'SubmitScriptAsJob', {
            'user_id': 'user01',
            'script': '#!/bin/bash\n#SBATCH -J test\nsrun hostname\n',
            'script_file_full_path': '/home/user01/jobs',
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'job_id': 43})
        self.assertEqual(
            self.executor.inputs[-1],
            '#!/bin/bash\n#SBATCH --chdir=/home/user01/jobs\n#SBATCH -J test\nsrun hostname\n')

    def test_submit_script_as_job_without_path(self):
        response = self.rpc('job', 'SubmitScriptAsJob', {
            'user_id': 'user01',
            'script': '#!/bin/bash\nsrun hostname\n',
        })
        self.assertRpcError(response, 500, 'SCRIPT_FILE_FULL_PATH_NOT_SETTING')

    def test_submit_script_as_job_with_chdir(self):
        self.executor.set('sbatch', 'Submitted batch job 44\n')
        script = '#!/bin/bash\n#SBATCH --chdir=/scratch\nsrun hostname\n'
        response = self.rpc('job', 'SubmitScriptAsJob', {'user_id': 'user01', 'script': script})
        self.assertEqual(response.json(), {'job_id': 44})
        self.assertEqual(self.executor.inputs[-1], script)

    def test_cancel_job(self):
        self.executor.set('squeue --noheader -j 42', '42 compute test user01 R 1:00 1 node001\n')
        response = self.rpc('job', 'CancelJob', {'user_id': 'user01', 'job_id': 42})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.commands[-1], ['sudo', '-n', '-u', 'user01', '--', 'scancel', '42'])

    def test_cancel_job_not_found(self):
        self.executor.set('squeue --noheader -j 42', CommandResult('', 'slurm_load_jobs error: Invalid job id', 1))
        response = self.rpc('job', 'CancelJob', {'user_id': 'user01', 'job_id': 42})
        self.assertRpcError(response, 404, 'JOB_NOT_FOUND')

    def test_cancel_job_failed(self):
        self.executor.set('squeue --noheader -j 42', '42 compute test user01 R 1:00 1 node001\n')
        self.executor.set('scancel', CommandResult('', 'scancel: error: Access/permission denied\n', 1))
        response = self.rpc('job', 'CancelJob', {'user_id': 'user01', 'job_id': 42})
        self.assertRpcError(response, 500, 'CANCEL_JOB_FAILED')

    def test_query_job_time_limit(self):
        self.create_job(42, self.assoc, state=StatesJob.RUNNING, timelimit=120)
        self.create_job(43, self.assoc, state=StatesJob.COMPLETED, timelimit=120)
        response = self.rpc('job', 'QueryJobTimeLimit', {'job_id': 42})
        self.assertEqual(response.json(), {'time_limit_minutes': 120})
        response = self.rpc('job', 'QueryJobTimeLimit', {'job_id': 43})
        self.assertRpcError(response, 404, 'JOB_NOT_FOUND')

    def test_change_job_time_limit(self):
        self.create_job(42, self.assoc, state=StatesJob.RUNNING, timelimit=120)
        response = self.rpc('job', 'ChangeJobTimeLimit', {'job_id': 42, 'delta_minutes': -10})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.executor.ran('scontrol update'), [['scontrol', 'update', 'job=42', 'TimeLimit-=10']])

        self.rpc('job', 'ChangeJobTimeLimit', {'job_id': 42, 'delta_minutes': 30})
        self.assertEqual(self.executor.ran('scontrol update')[-1], ['scontrol', 'update', 'job=42', 'TimeLimit+=30'])

    def test_engine_store_path_total_count(self):
        for id_job in range(1, 26):
            self.create_job(id_job, self.assoc)
        engine = JobQueryEngine(self.context)
        jobs, total = engine.get_jobs(JobFilter(accounts=['acme']), sort=make_sort('job_id'), page=(3, 10))
        self.assertEqual(total, 25)
        self.assertEqual([job['job_id'] for job in jobs], list(range(21, 26)))

        jobs, total = engine.get_jobs(JobFilter(accounts=['acme']))
        self.assertIsNone(total)
        self.assertEqual(len(jobs), 25)


class JobHelpersTestCase(SimpleTestCase):
    def test_parse_job_id(self):
        self.assertEqual(parse_job_id('Submitted batch job 42\n'), 42)
        self.assertEqual(parse_job_id('Submitted batch job 42 on cluster hpc'), None)
        self.assertEqual(parse_job_id(''), None)

    def test_insert_chdir_without_shebang(self):
        self.assertEqual(insert_chdir('srun hostname', '/scratch'), '#!/bin/bash\n#SBATCH --chdir=/scratch\nsrun hostname')

    def test_project(self):
        job = {'job_id': 1, 'name': 'test', 'cpus_alloc': 4}
        self.assertEqual(project(job), job)
        self.assertEqual(project(job, ['name']), {'job_id': 0, 'name': 'test', 'cpus_alloc': 0})
