"""
Classification of the state code stored by slurmdbd.

| code | label     | reason              | allocation                        |
|------|-----------|---------------------|-----------------------------------|
| 0    | PENDING   | from squeue         | nothing allocated yet             |
| 1    | RUNNING   | "Running"           | from tres_alloc, elapsed until now|
| 2    | SUSPENDED | from squeue         | from tres_alloc, no elapsed time  |
| 3-7  | terminal  | "end of job"        | from tres_alloc, end - start      |
"""
import time
from slurm.models import JobTable

StatesJob = JobTable.StatesJob

# states of the jobs that are still known by slurmctld
LIVE_STATES = (StatesJob.PENDING, StatesJob.RUNNING, StatesJob.SUSPENDED)

# other spellings used by slurm or by older clients
STATE_ALIASES = {
    'SUSPEND': StatesJob.SUSPENDED,
    'CANCELED': StatesJob.CANCELLED,
    'COMPLETE': StatesJob.COMPLETED,
    'COMPLETING': StatesJob.RUNNING,
    'CONFIGURING': StatesJob.RUNNING,
    'PD': StatesJob.PENDING,
    'R': StatesJob.RUNNING,
    'S': StatesJob.SUSPENDED,
}

REASON_RUNNING = 'Running'
REASON_ENDED = 'end of job'

# mem_req above this value has the per-cpu flag of slurm set, it is not a size
MAX_MEM_REQ = 4000000000


def state_label(code):
    """Label of a state code, the codes added after NODE_FAIL are shown as COMPLETED"""
    try:
        return StatesJob(code).name
    except ValueError:
        return StatesJob.COMPLETED.name


def state_id(label, default=StatesJob.COMPLETED):
    """Code of a state label, accepting the aliases"""
    label = label.strip().upper()
    if label in StatesJob.names:
        return int(StatesJob[label])
    if label in STATE_ALIASES:
        return int(STATE_ALIASES[label])
    return int(default)


def is_terminal(code):
    return code not in LIVE_STATES


def needs_live_reason(code):
    return code in (StatesJob.PENDING, StatesJob.SUSPENDED)


def mem_req_mb(mem_req):
    if mem_req > MAX_MEM_REQ:
        return 0
    return mem_req


class DerivedJob:
    """Presentation state and resources of one job"""

    def __init__(self, state, reason='', cpus_alloc=0, mem_alloc_mb=0, nodes_alloc=0,
                 gpus_alloc=0, nodes_req=0, elapsed_seconds=0):
        self.state = state
        self.reason = reason
        self.cpus_alloc = cpus_alloc
        self.mem_alloc_mb = mem_alloc_mb
        self.nodes_alloc = nodes_alloc
        self.gpus_alloc = gpus_alloc
        self.nodes_req = nodes_req
        self.elapsed_seconds = elapsed_seconds


def derive(job, registry, gpu_accounting, live_reason='', now=None):
    """
    Derive the state, the reason and the allocated resources of a row of the job table.

    live_reason is the reason given by squeue, it is only used for the pending
    and suspended jobs. gpu_accounting is False when the select plugin of the
    cluster does not record the gpus in the TRES, the gpus are then reported as 0.
    """
    if now is None:
        now = int(time.time())
    code = job.state
    # nodes_req stays the requested count for every state, the allocated count
    # is in nodes_alloc
    derived = DerivedJob(state_label(code), nodes_req=registry.nodes(job.tres_req))

    if code == StatesJob.PENDING:
        derived.reason = live_reason
        return derived

    derived.cpus_alloc = registry.cpus(job.tres_alloc)
    derived.mem_alloc_mb = registry.mem_mb(job.tres_alloc)
    derived.nodes_alloc = registry.nodes(job.tres_alloc)
    if gpu_accounting:
        derived.gpus_alloc = registry.gpu_count(job.tres_alloc)

    if code == StatesJob.RUNNING:
        derived.reason = REASON_RUNNING
        if job.time_start:
            derived.elapsed_seconds = max(now - job.time_start, 0)
    elif code == StatesJob.SUSPENDED:
        derived.reason = live_reason
    else:
        derived.reason = REASON_ENDED
        if job.time_start and job.time_end:
            derived.elapsed_seconds = max(job.time_end - job.time_start, 0)
    return derived
