"""
Query engine of GetJobById and GetJobs.

Two sources are merged: the job table of slurmdbd, which knows every job but
not why a job is waiting, and slurmctld, which only knows the jobs that are
not finished. GetJobs uses slurmctld alone for the "active jobs of these
users" queries and the job table for everything else.
"""
import logging
import time
from slurmadapter.exceptions import InvalidArgument, NotFound
from slurm.accounting import Sort, build_predicates
from slurm.scheduler import clean_reason, gres_count, parse_duration, parse_int, parse_memory_mb
from slurm.scheduler import parse_time_limit, parse_timestamp
from slurm.states import StatesJob, derive, is_terminal, mem_req_mb, needs_live_reason
from slurm.states import REASON_RUNNING, state_id, state_label

logger = logging.getLogger(__name__)

JOB_FIELDS = [
    'job_id',
    'name',
    'account',
    'user',
    'partition',
    'qos',
    'state',
    'cpus_req',
    'mem_req_mb',
    'nodes_req',
    'time_limit_minutes',
    'submit_time',
    'working_directory',
    'stdout_path',
    'stderr_path',
    'start_time',
    'elapsed_seconds',
    'reason',
    'node_list',
    'gpus_alloc',
    'cpus_alloc',
    'mem_alloc_mb',
    'nodes_alloc',
    'end_time',
]

NO_NODE_ASSIGNED = 'None assigned'


def project(job, fields=None):
    """
    Keep the requested fields of a job, the other fields are reset to their zero
    value. All the fields are kept when fields is empty.
    """
    if not fields:
        return dict(job)
    projected = {}
    for field, value in job.items():
        if field in fields:
            projected[field] = value
        elif isinstance(value, str):
            projected[field] = ''
        else:
            projected[field] = 0
    return projected


class JobQueryEngine:
    def __init__(self, context):
        self.context = context
        self.store = context.store
        self.scheduler = context.scheduler
        self._usernames = {}

    def username(self, uid):
        if uid not in self._usernames:
            self._usernames[uid] = self.context.identity.username(uid)
        return self._usernames[uid]

    def get_job(self, job_id):
        record = self.store.job_by_id(job_id)
        if record is None:
            raise NotFound('Job {} does not exist.'.format(job_id), reason='JOB_NOT_FOUND')

        details = {}
        if not is_terminal(record.state):
            details = self.scheduler.job_details(record.id_job) or {}
            if not details:
                logger.warning('Job {} is not known by slurmctld'.format(job_id))
        reason = ''
        if needs_live_reason(record.state):
            reason = clean_reason(details.get('Reason', ''))

        job = self.job_from_record(
            record,
            self.store.tres_registry(),
            self.scheduler.gpu_accounting(),
            reason,
            {record.id_qos: self.store.qos_name(record.id_qos)},
            int(time.time()))
        job['stdout_path'] = details.get('StdOut', '')
        job['stderr_path'] = details.get('StdErr', '')
        return job

    def get_jobs(self, job_filter, sort=None, page=None):
        """
        Return the jobs matching the filter and their total number. The total is
        None when the jobs are not paginated.
        """
        if job_filter.users and job_filter.only_live_states():
            return self.live_jobs(job_filter, sort), None
        return self.store_jobs(job_filter, sort, page)

    def known_users(self, users):
        """Return {username: uid} of the users of the filter that exist"""
        known = {}
        for user in users:
            uid = self.context.identity.uid(user)
            if uid is None:
                logger.warning('Unknown user {} in the filter'.format(user))
            else:
                known[user] = uid
        return known

    def store_jobs(self, job_filter, sort=None, page=None):
        uids = None
        if job_filter.users:
            uids = list(self.known_users(job_filter.users).values())

        predicates = build_predicates(job_filter, uids)
        records, total = self.store.query_jobs(predicates, sort=sort, page=page, with_count=page is not None)
        if not records:
            return [], total

        registry = self.store.tres_registry()
        gpu_accounting = self.scheduler.gpu_accounting()
        qos_names = self.store.qos_names()
        reasons = {}
        if any(needs_live_reason(record.state) for record in records):
            reasons = self.scheduler.pending_reasons()
        running = set()
        if any(record.state == StatesJob.RUNNING for record in records):
            running = self.scheduler.running_job_ids()

        now = int(time.time())
        jobs = []
        for record in records:
            reason = ''
            if record.state == StatesJob.RUNNING:
                if record.id_job not in running and not self.scheduler.job_exists(record.id_job):
                    # the job table was not updated when the job ended
                    logger.warning('Running job {} is not known by slurmctld, skipped'.format(record.id_job))
                    continue
            elif needs_live_reason(record.state):
                reason = reasons.get(record.id_job)
                if reason is None:
                    reason = self.scheduler.job_reason(record.id_job)
                if reason is None:
                    # the job finished between the two queries
                    logger.warning('Job {} is not known by slurmctld, skipped'.format(record.id_job))
                    continue
            jobs.append(self.job_from_record(record, registry, gpu_accounting, reason, qos_names, now))
        return jobs, total

    def job_from_record(self, record, registry, gpu_accounting, reason, qos_names, now):
        derived = derive(record, registry, gpu_accounting, live_reason=reason, now=now)
        return {
            'job_id': record.id_job,
            'name': record.name_text,
            'account': record.account or '',
            'user': self.username(record.id_user),
            'partition': record.partition,
            'qos': qos_names.get(record.id_qos, ''),
            'state': derived.state,
            'cpus_req': record.cpus_req,
            'mem_req_mb': mem_req_mb(record.mem_req),
            'nodes_req': derived.nodes_req,
            'time_limit_minutes': record.timelimit,
            'submit_time': record.time_submit,
            'working_directory': record.work_dir_text,
            'stdout_path': '',
            'stderr_path': '',
            'start_time': record.time_start,
            'elapsed_seconds': derived.elapsed_seconds,
            'reason': derived.reason,
            'node_list': record.nodelist or '',
            'gpus_alloc': derived.gpus_alloc,
            'cpus_alloc': derived.cpus_alloc,
            'mem_alloc_mb': derived.mem_alloc_mb,
            'nodes_alloc': derived.nodes_alloc,
            'end_time': record.time_end,
        }

    def live_jobs(self, job_filter, sort=None):
        # squeue fails on the whole query when one of the users does not exist
        users = list(self.known_users(job_filter.users))
        if not users:
            return []
        states = [state_label(code) for code in job_filter.state_ids()]
        rows = self.scheduler.jobs(users, states, job_name=job_filter.job_name, job_id=job_filter.job_id)
        if job_filter.accounts:
            rows = [row for row in rows if row.account in job_filter.accounts]
        if not rows:
            return []

        submit_info = self.store.submit_info([parse_int(row.job_id) for row in rows])
        reasons = {}
        if any(state_id(row.state, default=StatesJob.RUNNING) != StatesJob.RUNNING for row in rows):
            reasons = self.scheduler.pending_reasons(users=users)

        now = int(time.time())
        jobs = [self.job_from_live(row, submit_info, reasons, now) for row in rows]
        if job_filter.submit_start is not None:
            jobs = [job for job in jobs if job['submit_time'] >= job_filter.submit_start]
        if job_filter.submit_end is not None:
            jobs = [job for job in jobs if job['submit_time'] <= job_filter.submit_end]

        if sort is not None and sort.field:
            if sort.field not in JOB_FIELDS:
                raise InvalidArgument('Can\'t sort on {}.'.format(sort.field), reason='INVALID_SORT_FIELD')
            jobs.sort(key=lambda job: job[sort.field], reverse=sort.descending)
        return jobs

    def job_from_live(self, row, submit_info, reasons, now):
        job_id = parse_int(row.job_id)
        code = state_id(row.state, default=StatesJob.RUNNING)
        # squeue does not keep the submit time of every job, the job table does
        time_submit, db_timelimit = submit_info.get(job_id, (0, 0))
        if not time_submit:
            time_submit = now
        time_limit = parse_time_limit(row.time_limit)
        if time_limit is None:
            time_limit = db_timelimit
        cpus = parse_int(row.cpus)
        nodes = parse_int(row.nodes)
        mem = parse_memory_mb(row.mem)

        job = {
            'job_id': job_id,
            'name': row.name,
            'account': row.account,
            'user': row.user,
            'partition': row.partition,
            'qos': row.qos,
            'state': state_label(code),
            'cpus_req': cpus,
            'mem_req_mb': mem,
            'nodes_req': nodes,
            'time_limit_minutes': time_limit,
            'submit_time': time_submit,
            'working_directory': row.work_dir,
            'stdout_path': '',
            'stderr_path': '',
            'start_time': 0,
            'elapsed_seconds': 0,
            'reason': reasons.get(job_id, ''),
            'node_list': NO_NODE_ASSIGNED,
            'gpus_alloc': 0,
            'cpus_alloc': 0,
            'mem_alloc_mb': 0,
            'nodes_alloc': 0,
            'end_time': 0,
        }
        if code == StatesJob.PENDING:
            return job

        if code == StatesJob.RUNNING:
            job['reason'] = REASON_RUNNING
            job['elapsed_seconds'] = parse_duration(row.elapsed)
        job['start_time'] = parse_timestamp(row.start_time)
        job['node_list'] = row.node_list
        job['gpus_alloc'] = gres_count(row.gres) * nodes
        job['cpus_alloc'] = cpus
        job['mem_alloc_mb'] = mem
        job['nodes_alloc'] = nodes
        return job


def make_sort(field=None, order='ASC'):
    return Sort(field=field or None, descending=(order or 'ASC').upper() == 'DESC')
