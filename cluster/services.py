import logging
from slurmadapter.common import check_identifiers
from slurmadapter.exceptions import Internal, NotFound

logger = logging.getLogger(__name__)

SCHEDULER_NAME = 'slurm'


class ClusterService:
    def __init__(self, context):
        self.context = context
        self.config = context.config
        self.store = context.store
        self.scheduler = context.scheduler

    def partitions(self):
        partitions = self.scheduler.partitions()
        if not partitions:
            raise Internal('The cluster has no partition.', reason='NO_PARTITION')
        return partitions

    def partition_config(self, partition, all_qos):
        return {
            'name': partition.name,
            'mem_mb': partition.mem_mb,
            'cores': partition.total_cpus,
            'gpus': partition.gpus,
            'nodes': partition.total_nodes,
            'qos': partition.qos(all_qos),
            'comment': self.config.partition_description(partition.name),
        }

    def cluster_config(self):
        all_qos = list(self.store.qos_names().values())
        return {
            'scheduler_name': SCHEDULER_NAME,
            'partitions': [self.partition_config(p, all_qos) for p in self.partitions()],
        }

    def available_partitions(self, user, account):
        """Partitions where the account is allowed to submit jobs"""
        check_identifiers(user, account)
        if not self.store.account_exists(account):
            raise NotFound('{} does not exist.'.format(account), reason='ACCOUNT_NOT_FOUND')
        if not self.store.user_exists(user):
            raise NotFound('{} does not exist.'.format(user), reason='USER_NOT_FOUND')
        if not self.store.association_exists(user, account):
            raise NotFound(
                'The association of {} and {} does not exist.'.format(user, account),
                reason='USER_ACCOUNT_NOT_FOUND')

        all_qos = list(self.store.qos_names().values())
        return [
            self.partition_config(p, all_qos)
            for p in self.partitions()
            if account in p.allow_accounts
        ]

    def nodes_info(self, names=None):
        return self.scheduler.nodes(names)

    def partition_info(self, name):
        usage = self.scheduler.partition_usage(name)
        pending_jobs = self.scheduler.job_count(name, 'pending')
        running_jobs = self.scheduler.job_count(name, 'running')
        running_gpus = self.scheduler.running_gpus(name) if running_jobs else 0
        total_gpus = usage.total_gpus
        not_available_gpus = usage.not_available_gpus
        running_cores, idle_cores, not_available_cores, total_cores = usage.cores
        running_nodes, idle_nodes, not_available_nodes, total_nodes = usage.nodes
        percentage = 0
        if total_nodes:
            percentage = int(running_nodes * 100 / total_nodes)
        return {
            'partition_name': name,
            'node_count': total_nodes,
            'running_node_count': running_nodes,
            'idle_node_count': idle_nodes,
            'not_available_node_count': not_available_nodes,
            'cpu_core_count': total_cores,
            'running_cpu_count': running_cores,
            'idle_cpu_count': idle_cores,
            'not_available_cpu_count': not_available_cores,
            'gpu_core_count': total_gpus,
            'running_gpu_count': running_gpus,
            'idle_gpu_count': max(total_gpus - running_gpus - not_available_gpus, 0),
            'not_available_gpu_count': not_available_gpus,
            'job_count': pending_jobs + running_jobs,
            'running_job_count': running_jobs,
            'pending_job_count': pending_jobs,
            'usage_rate_percentage': percentage,
            'partition_status': 'AVAILABLE' if usage.available else 'NOT_AVAILABLE',
        }

    def cluster_info(self):
        return {
            'cluster_name': self.config.cluster_name,
            'partitions': [self.partition_info(name) for name in self.scheduler.partition_names()],
        }

    def version(self):
        major, minor, patch = self.config.version
        return {'major': major, 'minor': minor, 'patch': patch}
