import yaml
from django.conf import settings
from slurmadapter.common import PosixIdentity
from slurm.accounting import AccountingStore
from slurm.scheduler import CommandExecutor, SlurmControl, SlurmScheduler


def load_partition_descriptions(path):
    """
    Read the comments of the partitions from a yaml file:

    partitions:
      - name: compute
        desc: General purpose CPU nodes
    """
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    return {item['name']: item.get('desc', '') for item in data.get('partitions', [])}


class ClusterConfig:
    def __init__(self, cluster_name, default_qos='normal', module_path='', partition_descriptions=None,
                 db_encoding='utf8mb4', command_timeout=None, run_as_user=None, node_query_workers=8,
                 version=(1, 6, 0)):
        self.cluster_name = cluster_name
        self.default_qos = default_qos
        self.module_path = module_path
        self.partition_descriptions = partition_descriptions or {}
        self.db_encoding = db_encoding
        self.command_timeout = command_timeout
        self.run_as_user = run_as_user or []
        self.node_query_workers = node_query_workers
        self.version = version

    @classmethod
    def from_settings(cls):
        descriptions = dict(settings.SLURM_PARTITION_DESCRIPTIONS)
        if settings.SLURM_PARTITION_DESCRIPTIONS_FILE:
            descriptions.update(load_partition_descriptions(settings.SLURM_PARTITION_DESCRIPTIONS_FILE))
        return cls(
            cluster_name=settings.CLUSTER_NAME,
            default_qos=settings.SLURM_DEFAULT_QOS,
            module_path=settings.SLURM_MODULE_PATH,
            partition_descriptions=descriptions,
            db_encoding=settings.SLURM_DB_ENCODING,
            command_timeout=settings.SLURM_COMMAND_TIMEOUT,
            run_as_user=settings.SLURM_RUN_AS_USER,
            node_query_workers=settings.SLURM_NODE_QUERY_WORKERS,
            version=settings.ADAPTER_VERSION,
        )

    def partition_description(self, name):
        return self.partition_descriptions.get(name, '')


class SlurmContext:
    """
    Dependencies of the services: the configuration, the accounting store, the
    slurm commands and the resolution of the users.
    """

    def __init__(self, config, executor, identity, store=None):
        self.config = config
        self.executor = executor
        self.identity = identity
        self.store = store or AccountingStore(encoding=config.db_encoding)
        self.scheduler = SlurmScheduler(executor, node_query_workers=config.node_query_workers)
        self.control = SlurmControl(executor, run_as_user=config.run_as_user)

    @classmethod
    def from_settings(cls):
        config = ClusterConfig.from_settings()
        return cls(config, CommandExecutor(timeout=config.command_timeout), PosixIdentity())
