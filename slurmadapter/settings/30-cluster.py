CLUSTER_NAME = 'hpc'  # prefix of the slurmdbd tables of this cluster

# QOS given by default to the users added to an account
SLURM_DEFAULT_QOS = 'normal'

# Sourced by the scripts generated for SubmitJob
SLURM_MODULE_PATH = '/etc/profile.d/modules.sh'

# Comment returned with each partition
SLURM_PARTITION_DESCRIPTIONS = {
    'compute': 'General purpose CPU nodes',
    'gpu': 'GPU nodes',
}
# Optional yaml file with a list of partitions, each with a name and a desc
SLURM_PARTITION_DESCRIPTIONS_FILE = None

# Seconds before an external command is killed
SLURM_COMMAND_TIMEOUT = 60

# Prefix used to run sbatch and scancel as the user owning the job
SLURM_RUN_AS_USER = ['sudo', '-n', '-u', '{user}', '--']

# Number of scontrol processes running at the same time for GetClusterNodesInfo
SLURM_NODE_QUERY_WORKERS = 8

ADAPTER_VERSION = (1, 6, 0)
