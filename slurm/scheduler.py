"""
Access to the live state of slurmctld with the slurm commands.

CommandExecutor is the only place running a process. SlurmScheduler parses
the output of squeue, scontrol and sinfo into structured values and
SlurmControl runs the commands changing the state of the cluster (sacctmgr,
scontrol update, sbatch and scancel).
"""
import logging
import subprocess
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from slurmadapter.exceptions import CommandFailed, ControllerUnreachable

logger = logging.getLogger(__name__)

CommandResult = namedtuple('CommandResult', ['stdout', 'stderr', 'returncode'])

# text printed by the slurm commands when slurmctld does not answer
CONTROLLER_DOWN_MARKERS = [
    'Unable to contact slurm controller',
    'slurm_load_partitions: ',
    'slurm_load_jobs error: Socket timed out',
    'slurm_load_node: ',
    'Connection refused',
]

ALLOW_ALL = 'ALL'

# columns of the squeue output used for the live jobs, separated by |
SQUEUE_FIELDS = [
    ('gres', '%b'),
    ('account', '%a'),
    ('job_id', '%A'),
    ('cpus', '%C'),
    ('nodes', '%D'),
    ('name', '%j'),
    ('time_limit', '%l'),
    ('mem', '%m'),
    ('elapsed', '%M'),
    ('partition', '%P'),
    ('qos', '%q'),
    ('start_time', '%S'),
    ('state', '%T'),
    ('user', '%u'),
    ('work_dir', '%Z'),
    ('node_list', '%N'),
]
SQUEUE_FORMAT = '|'.join(code for _, code in SQUEUE_FIELDS)

LiveJob = namedtuple('LiveJob', [name for name, _ in SQUEUE_FIELDS])

# when squeue gives this reason, the rest of the text is not useful
ACCOUNT_NOT_PERMITTED = 'Job\'s account not permitted to use this partition'


class CommandExecutor:
    """Run a command and capture its output, the command is killed after timeout seconds"""

    def __init__(self, timeout=None):
        self.timeout = timeout

    def run(self, args, input=None, timeout=None):
        if timeout is None:
            timeout = self.timeout
        logger.debug('Running: {}'.format(' '.join(args)))
        try:
            result = subprocess.run(
                args,
                input=input,
                capture_output=True,
                text=True,
                errors='replace',
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise CommandFailed('{} did not finish in {} seconds.'.format(args[0], timeout), reason='COMMAND_TIMEOUT')
        except OSError as e:
            raise CommandFailed('Could not run {}: {}'.format(args[0], e))
        logger.debug('{} exited with {}'.format(args[0], result.returncode))
        return CommandResult(result.stdout, result.stderr, result.returncode)


def controller_down(output):
    return any(marker in output for marker in CONTROLLER_DOWN_MARKERS)


def parse_key_values(text):
    """
    Parse the output of scontrol --oneliner, "Key=Value Key2=Value2", into a dict.
    Values can contain = but not spaces.
    """
    result = {}
    for pair in text.split():
        key, sep, value = pair.partition('=')
        if sep:
            result[key] = value
    return result


def parse_duration(value):
    """Parse [days-][hours:]minutes:seconds into seconds, 0 if it can't be parsed"""
    value = value.strip()
    days = 0
    if '-' in value:
        day_part, _, value = value.partition('-')
        try:
            days = int(day_part)
        except ValueError:
            return 0
    try:
        parts = [int(p) for p in value.split(':')]
    except ValueError:
        return 0
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + part
    if len(parts) == 1:
        # only minutes
        seconds = parts[0] * 60
    return days * 86400 + seconds


def parse_time_limit(value):
    """Time limit in minutes, None when squeue does not know it"""
    if value == 'UNLIMITED':
        return 0
    if value in ('INVALID', 'NOT_SET', ''):
        return None
    return parse_duration(value) // 60


def parse_memory_mb(value):
    """Parse a size like 4000M, 250G or 2T into MB"""
    value = value.strip()
    if not value:
        return 0
    units = {'K': 1 / 1024, 'M': 1, 'G': 1024, 'T': 1024 * 1024, 'P': 1024 * 1024 * 1024}
    unit = value[-1].upper()
    try:
        if unit in units:
            return int(float(value[:-1]) * units[unit])
        return int(float(value))
    except ValueError:
        return 0


def parse_timestamp(value):
    """Parse the ISO time of squeue, 0 when it is N/A or unknown"""
    try:
        return int(datetime.strptime(value.strip(), '%Y-%m-%dT%H:%M:%S').timestamp())
    except ValueError:
        return 0


def gres_count(gres):
    """Number of gpus per node in a gres like gres/gpu:2, gpu:a100:4 or (null)"""
    if not gres or gres in ('N/A', '(null)'):
        return 0
    # gres can be followed by the sockets, gpu:4(S:0-1)
    count = gres.split(',')[0].split('(')[0].split(':')[-1]
    try:
        return int(count)
    except ValueError:
        return 0


def parse_int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class AccountACL:
    """
    AllowAccounts of a partition, either the ALL sentinel or an explicit list
    of accounts.
    """

    def __init__(self, accounts=None):
        # None means ALL
        self.accounts = None if accounts is None else list(accounts)

    @classmethod
    def parse(cls, value):
        if value is None or value.strip() in ('', ALLOW_ALL):
            return cls()
        return cls([account for account in value.strip().split(',') if account])

    @property
    def unrestricted(self):
        return self.accounts is None

    def __contains__(self, account):
        return self.unrestricted or account in self.accounts

    def __eq__(self, other):
        return isinstance(other, AccountACL) and self.accounts == other.accounts

    def __str__(self):
        if self.unrestricted:
            return ALLOW_ALL
        return ','.join(self.accounts)

    def __repr__(self):
        return 'AccountACL({})'.format(str(self))

    def without(self, account):
        return AccountACL([a for a in self.accounts if a != account])

    def with_account(self, account):
        return AccountACL(self.accounts + [account])


class Partition:
    """A partition as shown by scontrol show partition"""

    def __init__(self, info):
        self.info = info
        self.name = info.get('PartitionName', '')
        self.allow_accounts = AccountACL.parse(info.get('AllowAccounts'))
        self.state = info.get('State', '')
        self.nodes = info.get('Nodes', '')
        self.total_cpus = parse_int(info.get('TotalCPUs'))
        self.total_nodes = parse_int(info.get('TotalNodes'))
        tres = self.tres()
        self.mem_mb = parse_memory_mb(tres.get('mem', '0'))
        self.gpus = parse_int(tres.get('gres/gpu'))

    def tres(self):
        tres = {}
        for item in self.info.get('TRES', '').split(','):
            key, sep, value = item.partition('=')
            if sep:
                tres[key] = value
        return tres

    def qos(self, all_qos):
        """QOS usable in the partition, the partition QOS or else the AllowQos list"""
        partition_qos = self.info.get('QoS', 'N/A')
        if partition_qos and partition_qos != 'N/A':
            return [partition_qos]
        allow_qos = self.info.get('AllowQos', ALLOW_ALL)
        if allow_qos == ALLOW_ALL:
            return list(all_qos)
        return [qos for qos in allow_qos.split(',') if qos]


class NodeInfo:
    IDLE = 'IDLE'
    RUNNING = 'RUNNING'
    NOT_AVAILABLE = 'NOT_AVAILABLE'

    def __init__(self, info):
        self.node_name = info.get('NodeName', '')
        self.partitions = [p for p in info.get('Partitions', '').split(',') if p]
        self.state = self.map_state(info.get('State', ''))
        self.cpu_core_count = parse_int(info.get('CPUTot'))
        self.alloc_cpu_core_count = parse_int(info.get('CPUAlloc'))
        self.idle_cpu_core_count = max(self.cpu_core_count - self.alloc_cpu_core_count, 0)
        self.total_mem_mb = parse_int(info.get('RealMemory'))
        self.alloc_mem_mb = parse_int(info.get('AllocMem'))
        self.idle_mem_mb = max(self.total_mem_mb - self.alloc_mem_mb, 0)
        self.gpu_count = gres_count(info.get('Gres', '(null)'))
        self.alloc_gpu_count = 0
        for item in info.get('AllocTRES', '').split(','):
            key, sep, value = item.partition('=')
            if sep and key.startswith('gres/gpu'):
                self.alloc_gpu_count = parse_int(value)
                break
        self.idle_gpu_count = max(self.gpu_count - self.alloc_gpu_count, 0)

    @classmethod
    def map_state(cls, state):
        if state in ('IDLE', 'IDLE+PLANNED'):
            return cls.IDLE
        if state in ('ALLOCATED', 'MIXED'):
            return cls.RUNNING
        return cls.NOT_AVAILABLE


class PartitionUsage:
    """Cores, nodes and gpus of a partition from sinfo"""

    def __init__(self, name):
        self.name = name
        self.state = ''
        self.cores = [0, 0, 0, 0]  # allocated, idle, other, total
        self.nodes = [0, 0, 0, 0]
        self.gpus_per_node = 0

    @property
    def available(self):
        return self.state == 'up'

    @property
    def total_gpus(self):
        return self.gpus_per_node * self.nodes[3]

    @property
    def not_available_gpus(self):
        return self.gpus_per_node * self.nodes[2]

    def add_line(self, line):
        # %P %c %C %G %a %D %F
        columns = line.split()
        if len(columns) < 7:
            return
        self.state = columns[4]
        for i, value in enumerate(columns[2].split('/')[:4]):
            self.cores[i] += parse_int(value)
        for i, value in enumerate(columns[6].split('/')[:4]):
            self.nodes[i] += parse_int(value)
        self.gpus_per_node = max(self.gpus_per_node, gres_count(columns[3]))


class SlurmCommands:
    def __init__(self, executor):
        self.executor = executor

    def run(self, args, input=None, check=True):
        """
        Run a slurm command, raise ControllerUnreachable if slurmctld is down and
        CommandFailed if the command failed and check is set.
        """
        result = self.executor.run(args, input=input)
        if controller_down(result.stdout) or controller_down(result.stderr):
            raise ControllerUnreachable('slurmctld can\'t be contacted, {} failed.'.format(args[0]))
        if check and result.returncode != 0:
            raise CommandFailed('{} failed: {}'.format(' '.join(args), result.stderr.strip() or result.stdout.strip()))
        return result


class SlurmScheduler(SlurmCommands):
    """Read-only queries on slurmctld"""

    def __init__(self, executor, node_query_workers=8):
        super().__init__(executor)
        self.node_query_workers = node_query_workers

    def select_plugin(self):
        """Short name of the select plugin, cons_tres for select/cons_tres"""
        output = self.run(['scontrol', 'show', 'config']).stdout
        for line in output.splitlines():
            key, sep, value = line.partition('=')
            if sep and key.strip() == 'SelectType':
                return value.strip().split('/')[-1]
        return ''

    def gpu_accounting(self):
        """True when the gpus allocated to the jobs are recorded in their TRES"""
        return self.select_plugin() in ('cons_tres', 'cons_res')

    def partitions(self):
        output = self.run(['scontrol', 'show', 'partition', '--oneliner']).stdout
        return [Partition(parse_key_values(line)) for line in output.splitlines() if line.strip()]

    def partition(self, name):
        output = self.run(['scontrol', 'show', 'partition', name, '--oneliner']).stdout
        return Partition(parse_key_values(output))

    def partition_names(self):
        return [partition.name for partition in self.partitions()]

    def partition_allow_accounts(self, name):
        return self.partition(name).allow_accounts

    def jobs(self, users, states, job_name=None, job_id=None):
        """Pending, running and suspended jobs of the users"""
        args = ['squeue', '--noheader', '-u', ','.join(users), '-t', ','.join(states)]
        if job_name:
            args += ['-n', job_name]
        if job_id:
            args += ['-j', str(job_id)]
        args.append('--format={}'.format(SQUEUE_FORMAT))
        jobs = []
        for line in self.run(args).stdout.splitlines():
            if not line.strip():
                continue
            columns = line.split('|')
            if len(columns) != len(SQUEUE_FIELDS):
                logger.warning('Unexpected squeue line: {}'.format(line))
                continue
            jobs.append(LiveJob(*[c.strip() for c in columns]))
        return jobs

    def pending_reasons(self, users=None):
        """Return {job_id: reason} for the pending and suspended jobs"""
        args = ['squeue', '--noheader', '-t', 'pending,suspended', '--format=%i|%R']
        if users:
            args[2:2] = ['-u', ','.join(users)]
        reasons = {}
        for line in self.run(args).stdout.splitlines():
            job_id, sep, reason = line.strip().partition('|')
            if sep:
                reasons[parse_int(job_id, None)] = clean_reason(reason)
        return reasons

    def running_job_ids(self, users=None):
        """Ids of the jobs slurmctld reports as running"""
        args = ['squeue', '--noheader', '-t', 'running', '--format=%i']
        if users:
            args[2:2] = ['-u', ','.join(users)]
        ids = set()
        for line in self.run(args).stdout.splitlines():
            job_id = parse_int(line.strip(), None)
            if job_id is not None:
                ids.add(job_id)
        return ids

    def job_reason(self, job_id):
        """Reason of a job, None when slurmctld does not know the job anymore"""
        result = self.run(['squeue', '--noheader', '-j', str(job_id), '--format=%R'], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return clean_reason(result.stdout.strip().splitlines()[0])

    def job_details(self, job_id):
        """scontrol show job as a dict, None when the job is not known anymore"""
        result = self.run(['scontrol', 'show', 'job', str(job_id), '--oneliner'], check=False)
        if result.returncode != 0:
            return None
        return parse_key_values(result.stdout)

    def job_exists(self, job_id):
        result = self.run(['squeue', '--noheader', '-j', str(job_id)], check=False)
        return result.returncode == 0 and bool(result.stdout.strip())

    def account_has_jobs(self, account):
        output = self.run(['squeue', '--noheader', '-A', account]).stdout
        return bool(output.strip())

    def user_has_jobs(self, user):
        output = self.run(['squeue', '--noheader', '-u', user]).stdout
        return bool(output.strip())

    def node_names(self):
        output = self.run(['sinfo', '--noheader', '-N', '--format=%N']).stdout
        names = []
        for line in output.splitlines():
            if line.strip() and line.strip() not in names:
                names.append(line.strip())
        return names

    def node(self, name):
        output = self.run(['scontrol', 'show', 'node', name, '--oneliner']).stdout
        return NodeInfo(parse_key_values(output))

    def nodes(self, names=None):
        """
        Query the nodes concurrently, one scontrol per node. All the queries are
        waited for and every failure is reported.
        """
        if not names:
            names = self.node_names()
        with ThreadPoolExecutor(max_workers=self.node_query_workers) as pool:
            futures = [(name, pool.submit(self.node, name)) for name in names]
        nodes = []
        failures = []
        for name, future in futures:
            try:
                nodes.append(future.result())
            except CommandFailed as e:
                failures.append((name, e))
        if failures:
            for name, e in failures:
                logger.error('Query of node {} failed: {}'.format(name, e.message))
            if any(isinstance(e, ControllerUnreachable) for _, e in failures):
                raise ControllerUnreachable('slurmctld can\'t be contacted.')
            raise CommandFailed('Query failed for node(s): {}'.format(', '.join(name for name, _ in failures)))
        return nodes

    def partition_usage(self, name):
        output = self.run(['sinfo', '-p', name, '--noheader', '--format=%P %c %C %G %a %D %F']).stdout
        usage = PartitionUsage(name)
        for line in output.splitlines():
            if line.strip():
                usage.add_line(line.strip())
        return usage

    def job_count(self, partition, state):
        output = self.run(['squeue', '-p', partition, '--noheader', '-t', state, '--format=%i']).stdout
        return len([line for line in output.splitlines() if line.strip()])

    def running_gpus(self, partition):
        output = self.run(['squeue', '-p', partition, '--noheader', '-t', 'running', '--format=%b|%D']).stdout
        total = 0
        for line in output.splitlines():
            gres, sep, nodes = line.strip().partition('|')
            total += gres_count(gres) * (parse_int(nodes, 1) if sep else 1)
        return total


def clean_reason(reason):
    reason = reason.strip()
    if ACCOUNT_NOT_PERMITTED in reason:
        return ACCOUNT_NOT_PERMITTED
    return reason


class SlurmControl(SlurmCommands):
    """Commands changing the configuration of slurm or submitting jobs"""

    def __init__(self, executor, run_as_user=None):
        super().__init__(executor)
        self.run_as_user = run_as_user or []

    def as_user(self, user, args):
        return [part.format(user=user) for part in self.run_as_user] + args

    def set_allow_accounts(self, partition, acl):
        self.run(['scontrol', 'update', 'partition={}'.format(partition), 'AllowAccounts={}'.format(acl)])

    def create_account(self, account):
        self.run(['sacctmgr', '-i', 'create', 'account', 'name={}'.format(account)])

    def delete_account(self, account):
        self.run(['sacctmgr', '-i', 'delete', 'account', 'name={}'.format(account)])

    def create_association(self, user, account, partition):
        self.run(['sacctmgr', '-i', 'create', 'user', 'name={}'.format(user),
                  'partition={}'.format(partition), 'account={}'.format(account)])

    def set_user_qos(self, user, qos, default_qos):
        self.run(['sacctmgr', '-i', 'modify', 'user', user, 'set',
                  'qos={}'.format(','.join(qos)), 'DefaultQOS={}'.format(default_qos)])

    def set_default_account(self, user, account):
        self.run(['sacctmgr', '-i', 'update', 'user', 'set', 'DefaultAccount={}'.format(account),
                  'where', 'user={}'.format(user)])

    def delete_user(self, user, account=None):
        args = ['sacctmgr', '-i', 'delete', 'user', 'name={}'.format(user)]
        if account is not None:
            args.append('account={}'.format(account))
        self.run(args)

    def set_submit_limits(self, user, account, limit):
        """MaxSubmitJobs=0 blocks the user in the account, -1 removes the limits"""
        self.run(['sacctmgr', '-i', '-Q', 'modify', 'user', 'where', 'name={}'.format(user),
                  'account={}'.format(account), 'set'] +
                 ['{}={}'.format(key, limit) for key in ['MaxSubmitJobs', 'MaxJobs', 'GrpJobs', 'GrpSubmit', 'GrpSubmitJobs']])

    def change_time_limit(self, job_id, delta_minutes):
        if delta_minutes >= 0:
            change = 'TimeLimit+={}'.format(delta_minutes)
        else:
            change = 'TimeLimit-={}'.format(-delta_minutes)
        self.run(['scontrol', 'update', 'job={}'.format(job_id), change])

    def submit(self, user, script):
        """Submit a batch script as the user, return the output of sbatch"""
        result = self.run(self.as_user(user, ['sbatch']), input=script, check=False)
        return result

    def cancel(self, user, job_id):
        return self.run(self.as_user(user, ['scancel', str(job_id)]), check=False)
